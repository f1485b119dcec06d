from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Chain (read-only access to the game contract)
    rpc_url: str = "https://dream-rpc.somnia.network"
    chain_id: int = 50312
    mafia_contract_address: str = "0x08b225818fd058f6f7a918a5bf90269faa47ff55"
    rpc_timeout_seconds: float = 10.0

    # Storage: "memory" is single-instance only; use "firestore" when scaled out
    store_backend: str = "memory"
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    game_data_ttl_seconds: int = 86400

    # Discussion timer
    speaker_duration_seconds: float = 60.0
    initial_delay_seconds: float = 5.0
    advance_guard_seconds: float = 1.5

    # Event-log search (the Somnia RPC caps eth_getLogs at 1000 blocks)
    log_chunk_size: int = 990
    log_max_lookback: int = 5000

    # Off by default: stored secrets are not checked against roleCommits
    verify_role_commits: bool = False

    # Groth16 proving via the snarkjs CLI
    snarkjs_bin: str = "snarkjs"
    circuit_wasm_path: str = "public/mafia_outcome.wasm"
    circuit_zkey_path: str = "public/mafia_outcome_0001.zkey"
    proof_timeout_seconds: float = 30.0

    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
