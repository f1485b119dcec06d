import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from config import settings
from models.errors import CoordinatorError, TransientChainError

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Mafia coordinator starting up (chain {settings.chain_id}, "
        f"contract {settings.mafia_contract_address or 'unset'}, store {settings.store_backend})"
    )
    yield
    logger.info("Coordinator shutting down.")


app = FastAPI(
    title="Mafia Coordinator",
    version="0.1.0",
    description="Off-chain coordinator for on-chain Mafia: discussion timing, secret custody, "
                "investigation checks and ZK win certificates",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} → {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message, "kind": "validation"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # Untyped failures surface as a retryable backend outage
    logger.exception(f"{request.method} {request.url.path} → unhandled {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=TransientChainError.status_code,
        content={"error": "Backend temporarily unavailable", "kind": TransientChainError.kind},
    )


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "mafia-coordinator", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.zk_router import router as zk_router

app.include_router(game_router, prefix="/api")
app.include_router(zk_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
