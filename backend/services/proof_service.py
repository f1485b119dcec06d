"""
Groth16 proof pipeline for end-of-game certificates.

  prove(inputs)                      -> (proof, public_signals)   via `snarkjs groth16 fullprove`
  format_calldata(proof, signals)    -> ProofArtifact             layout the Solidity verifier takes

Proving is CPU-bound and seconds-scale, so it runs in a child process and is
awaited without blocking the event loop. generate() bounds it with a timeout;
on timeout or cancellation the child is killed and nothing is persisted.
"""
import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import settings
from models.errors import ProofGenerationError, ProofTimeoutError
from models.game import ProofArtifact

logger = logging.getLogger(__name__)

Proof = Dict[str, Any]
PublicSignals = List[str]


def _p256(value: Any) -> str:
    """Field element as a 0x-prefixed 32-byte hex string (snarkjs calldata format)."""
    return "0x" + format(int(str(value)), "x").zfill(64)


def format_calldata(proof: Proof, public_signals: Sequence[Any]) -> ProofArtifact:
    """
    Same layout as snarkjs `groth16 exportSolidityCallData`: A and C are the
    first two affine coordinates, and each B pair is swapped (the verifier
    expects Fq2 elements as [imaginary, real]).
    """
    try:
        pi_a, pi_b, pi_c = proof["pi_a"], proof["pi_b"], proof["pi_c"]
        return ProofArtifact(
            a=[_p256(pi_a[0]), _p256(pi_a[1])],
            b=[
                [_p256(pi_b[0][1]), _p256(pi_b[0][0])],
                [_p256(pi_b[1][1]), _p256(pi_b[1][0])],
            ],
            c=[_p256(pi_c[0]), _p256(pi_c[1])],
            inputs=[_p256(s) for s in public_signals],
        )
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ProofGenerationError(f"Malformed proof: {exc}") from exc


class Groth16Prover(ABC):

    @abstractmethod
    async def prove(self, inputs: Dict[str, str]) -> Tuple[Proof, PublicSignals]:
        ...


class SnarkjsProver(Groth16Prover):
    """Runs the snarkjs CLI against a compiled circuit (wasm + zkey)."""

    def __init__(
        self,
        snarkjs_bin: str = "",
        wasm_path: str = "",
        zkey_path: str = "",
    ):
        self.snarkjs_bin = snarkjs_bin or settings.snarkjs_bin
        self.wasm_path = wasm_path or settings.circuit_wasm_path
        self.zkey_path = zkey_path or settings.circuit_zkey_path

    async def prove(self, inputs: Dict[str, str]) -> Tuple[Proof, PublicSignals]:
        with tempfile.TemporaryDirectory(prefix="mafia-proof-") as workdir:
            input_path = os.path.join(workdir, "input.json")
            proof_path = os.path.join(workdir, "proof.json")
            public_path = os.path.join(workdir, "public.json")
            with open(input_path, "w") as f:
                json.dump(inputs, f)

            try:
                proc = await asyncio.create_subprocess_exec(
                    self.snarkjs_bin, "groth16", "fullprove",
                    input_path, self.wasm_path, self.zkey_path, proof_path, public_path,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise ProofGenerationError(f"Cannot start prover: {exc}") from exc

            try:
                _, stderr = await proc.communicate()
            except asyncio.CancelledError:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                logger.warning("[zk] Prover cancelled, child process killed")
                raise

            if proc.returncode != 0:
                detail = stderr.decode(errors="replace").strip()[-500:]
                raise ProofGenerationError(
                    f"snarkjs exited with code {proc.returncode}", details={"stderr": detail}
                )

            try:
                with open(proof_path) as f:
                    proof = json.load(f)
                with open(public_path) as f:
                    public_signals = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise ProofGenerationError(f"Unreadable prover output: {exc}") from exc

        return proof, [str(s) for s in public_signals]


class ProofService:

    def __init__(self, prover: Optional[Groth16Prover] = None, timeout_seconds: Optional[float] = None):
        self.prover = prover or SnarkjsProver()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.proof_timeout_seconds
        )

    async def generate(
        self, room_id: int, mafia_count: int, town_count: int
    ) -> Tuple[Proof, PublicSignals, ProofArtifact]:
        """Prove the outcome tally for a room. Raises ProofTimeoutError past the deadline."""
        inputs = {
            "roomId": str(room_id),
            "mafiaCount": str(mafia_count),
            "townCount": str(town_count),
        }
        logger.info(f"[room {room_id}] Generating proof: mafia={mafia_count}, town={town_count}")
        try:
            proof, public_signals = await asyncio.wait_for(
                self.prover.prove(inputs), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"[room {room_id}] Proof generation timed out after {self.timeout_seconds}s")
            raise ProofTimeoutError(
                f"ZK proof generation timed out after {self.timeout_seconds:g}s"
            )
        artifact = format_calldata(proof, public_signals)
        logger.info(f"[room {room_id}] Proof generated ({len(public_signals)} public signals)")
        return proof, public_signals, artifact


_proof_service: Optional[ProofService] = None


def get_proof_service() -> ProofService:
    global _proof_service
    if _proof_service is None:
        _proof_service = ProofService()
    return _proof_service
