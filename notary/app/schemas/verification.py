"""
Verification outcome schema.

A VerificationResult is ephemeral: it is produced per verification call
and returned to the caller (e.g. as an API response body).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VerificationState(str, Enum):
    """States visited by the verifier."""

    UPLOADED = "uploaded"
    EXTRACTED = "extracted"
    RECONSTRUCTED = "reconstructed"
    MATCH = "match"
    TAMPERED = "tampered"
    MALFORMED = "malformed"


class Verdict(str, Enum):
    """Terminal classification of a verification."""

    MATCH = "match"
    TAMPERED = "tampered"
    MALFORMED = "malformed"


TERMINAL_STATES = {
    VerificationState.MATCH,
    VerificationState.TAMPERED,
    VerificationState.MALFORMED,
}


class VerificationResult(BaseModel):
    """Verdict plus the evidence it was derived from."""

    verdict: Verdict

    proof: Optional[Dict[str, Any]] = Field(
        None,
        description="Decoded proof object, when one could be extracted",
    )

    claimed_fingerprint: Optional[str] = Field(
        None,
        description="Fingerprint carried as a claim inside the proof",
    )

    recovered_fingerprint: Optional[str] = Field(
        None,
        description="Fingerprint recomputed from the reconstructed baseline",
    )

    states: List[VerificationState] = Field(
        default_factory=list,
        description="States visited, in order, ending in a terminal state",
    )

    reason: Optional[str] = Field(
        None,
        description="Human-readable explanation for a MALFORMED verdict",
    )

    @model_validator(mode="after")
    def enforce_verdict_invariants(self):
        """
        - MATCH and TAMPERED require both fingerprints and the proof.
        - The recorded path, when present, ends in the verdict's state.
        """
        if self.verdict in (Verdict.MATCH, Verdict.TAMPERED):
            if (
                self.proof is None
                or self.claimed_fingerprint is None
                or self.recovered_fingerprint is None
            ):
                raise ValueError(
                    f"{self.verdict.value} requires proof and both fingerprints"
                )

        if self.states:
            last = self.states[-1]
            if last not in TERMINAL_STATES or last.value != self.verdict.value:
                raise ValueError(
                    f"State path must end in {self.verdict.value}, got {last.value}"
                )

        return self

    model_config = ConfigDict(frozen=True)
