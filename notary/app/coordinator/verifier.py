"""
Notarized document verification.

Classifies a submitted document as MATCH, TAMPERED or MALFORMED:

    UPLOADED -> EXTRACTED -> RECONSTRUCTED -> MATCH | TAMPERED
    any state -> MALFORMED

Verification is self-contained. The claimed fingerprint is read from the
embedded proof, the baseline is rebuilt from the document's own pages, and
the two fingerprints are compared. No network access, no retries.

Error handling policy:
    Input defects (unparseable container, missing or undecodable proof,
    missing fingerprint claim) produce a MALFORMED result. They are never
    raised to the caller. Logic errors still propagate.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from notary.app.errors import MalformedDocument, PayloadNotFound
from notary.app.schemas.documents import PROOF_ATTACHMENT_NAME, ProofObject
from notary.app.schemas.verification import (
    Verdict,
    VerificationResult,
    VerificationState,
)
from notary.app.services.canonicalize import reconstruct
from notary.app.services.extract import extract_payload

logger = logging.getLogger(__name__)


# Claim locations, in lookup order.
FINGERPRINT_CLAIM_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("contentFingerprint",),
    ("credentialSubject", "contentFingerprint"),
    ("claims", "contentFingerprint"),
    ("fingerprint",),
)


def find_fingerprint_claim(proof: ProofObject) -> Optional[str]:
    """Return the first non-empty string found at a known claim location."""
    for path in FINGERPRINT_CLAIM_PATHS:
        node: Any = proof
        for key in path:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)

        if isinstance(node, str) and node.strip():
            return node.strip()

    return None


def fingerprints_match(claimed: str, recovered: str) -> bool:
    return claimed.casefold() == recovered.casefold()


class _Run:
    """Per-call record of visited states."""

    def __init__(self) -> None:
        self.states: List[VerificationState] = [VerificationState.UPLOADED]
        self.proof: Optional[Dict[str, Any]] = None
        self.claimed: Optional[str] = None

    def advance(self, state: VerificationState) -> None:
        self.states.append(state)

    def malformed(self, reason: str) -> VerificationResult:
        logger.warning("Verification ended MALFORMED: %s", reason)
        self.states.append(VerificationState.MALFORMED)
        return VerificationResult(
            verdict=Verdict.MALFORMED,
            proof=self.proof,
            claimed_fingerprint=self.claimed,
            states=self.states,
            reason=reason,
        )


def verify(
    notarized_bytes: bytes,
    *,
    appended_pages: int = 1,
    max_pages: Optional[int] = None,
    max_bytes: Optional[int] = None,
) -> VerificationResult:
    """
    Verify a notarized document against its embedded proof.

    Args:
        notarized_bytes:
            Bytes of the submitted document.
        appended_pages:
            Number of trailing presentation pages to drop before
            recomputing the fingerprint.
        max_pages:
            Optional upper bound on the accepted page count.
        max_bytes:
            Optional upper bound on the submitted size. Larger documents
            are classified MALFORMED without being parsed.
    """
    run = _Run()

    if max_bytes is not None and len(notarized_bytes) > max_bytes:
        return run.malformed(
            f"Document is {len(notarized_bytes)} bytes, above the limit of "
            f"{max_bytes} bytes"
        )

    # --------------------------------------------------------------
    # UPLOADED -> EXTRACTED
    # --------------------------------------------------------------
    try:
        payload = extract_payload(notarized_bytes, PROOF_ATTACHMENT_NAME)
    except (MalformedDocument, PayloadNotFound) as exc:
        return run.malformed(str(exc))

    try:
        proof = json.loads(payload.content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        return run.malformed(f"Embedded proof is not valid JSON: {exc}")

    if not isinstance(proof, dict):
        return run.malformed("Embedded proof is not a JSON object")
    run.proof = proof

    claimed = find_fingerprint_claim(proof)
    if claimed is None:
        return run.malformed("Embedded proof carries no content fingerprint claim")
    run.claimed = claimed

    run.advance(VerificationState.EXTRACTED)

    # --------------------------------------------------------------
    # EXTRACTED -> RECONSTRUCTED
    # --------------------------------------------------------------
    try:
        baseline = reconstruct(
            notarized_bytes,
            appended_pages=appended_pages,
            max_pages=max_pages,
        )
    except MalformedDocument as exc:
        return run.malformed(str(exc))

    run.advance(VerificationState.RECONSTRUCTED)

    # --------------------------------------------------------------
    # RECONSTRUCTED -> MATCH | TAMPERED
    # --------------------------------------------------------------
    recovered = baseline.content_fingerprint
    if fingerprints_match(claimed, recovered):
        verdict = Verdict.MATCH
        run.advance(VerificationState.MATCH)
    else:
        verdict = Verdict.TAMPERED
        run.advance(VerificationState.TAMPERED)

    logger.info(
        "Verification verdict: %s",
        verdict.value,
        extra={"claimed": claimed, "recovered": recovered},
    )

    return VerificationResult(
        verdict=verdict,
        proof=proof,
        claimed_fingerprint=claimed,
        recovered_fingerprint=recovered,
        states=run.states,
    )
