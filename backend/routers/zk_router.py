"""
POST /api/zk — standalone outcome proof.

Proves an arbitrary (roomId, mafiaCount, townCount) tally. The win detector
uses the same ProofService; this route exists for clients that recompute the
tally themselves and only need the certificate.
"""
import logging

from fastapi import APIRouter, Depends

from models.game import ProofRequest
from services.proof_service import ProofService, get_proof_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["zk"])


@router.post("/zk")
async def generate_proof(
    body: ProofRequest,
    proofs: ProofService = Depends(get_proof_service),
):
    proof, public_signals, artifact = await proofs.generate(
        body.room_id, body.mafia_count, body.town_count
    )
    return {
        "proof": proof,
        "publicSignals": public_signals,
        "formatted": artifact.model_dump(),
    }
