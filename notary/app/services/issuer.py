"""
Credential issuer collaborator.

The notarization core never holds signing keys. A content claim is built
here and handed to an external issuer, which returns the signed proof
object that ends up embedded in the notarized document.

Contract with the issuer:
- request: the claim as a JSON object
- response: HTTP 200 with a JSON object body (the proof)
- the proof MUST carry the claimed content fingerprint unchanged

Signature and trust validation of the returned proof are out of scope.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from notary.app.config import NotaryConfig
from notary.app.errors import IssuerError
from notary.app.schemas.documents import ProofObject, RawDocument

logger = logging.getLogger(__name__)


CREDENTIALS_CONTEXT = "https://www.w3.org/2018/credentials/v1"
CREDENTIAL_TYPES = ["VerifiableCredential", "ContentCredential"]


class Issuer(Protocol):
    """Signs a content claim and returns the proof object."""

    def sign(self, claim: Dict[str, Any]) -> ProofObject:
        ...


# ------------------------------------------------------------------
# Claim construction
# ------------------------------------------------------------------

def build_content_claim(
    raw: RawDocument,
    *,
    issuer_id: str,
    subject_id: str,
    title: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build an unsigned, credential-shaped claim over ``raw``.

    ``extra`` entries are merged into ``credentialSubject`` but can never
    override ``id`` or ``contentFingerprint``.
    """
    subject: Dict[str, Any] = dict(extra or {})
    if title:
        subject["title"] = title
    subject["id"] = subject_id
    subject["contentFingerprint"] = raw.content_fingerprint

    return {
        "@context": [CREDENTIALS_CONTEXT],
        "id": f"urn:uuid:{uuid.uuid4()}",
        "type": list(CREDENTIAL_TYPES),
        "issuer": issuer_id,
        "issuanceDate": datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z"),
        "credentialSubject": subject,
    }


# ------------------------------------------------------------------
# HTTP issuer
# ------------------------------------------------------------------

class HttpIssuer:
    """
    Issuer reached over HTTP.

    One logical POST per claim. Transport failures (connection errors,
    timeouts) are retried with exponential backoff up to ``max_attempts``;
    HTTP error statuses are not retried. A caller-supplied ``httpx.Client``
    is used as-is and never closed here.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._client = client

    def sign(self, claim: Dict[str, Any]) -> ProofObject:
        correlation_id = f"notary-{uuid.uuid4()}"

        try:
            if self._client is not None:
                response = self._post(self._client, claim, correlation_id)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = self._post(client, claim, correlation_id)
        except httpx.RequestError as exc:
            raise IssuerError(
                f"Failed to call issuer "
                f"(correlation_id={correlation_id}): {exc}"
            ) from exc

        if response.status_code != 200:
            raise IssuerError(
                "Issuer error "
                f"(status={response.status_code}, "
                f"correlation_id={correlation_id}): "
                f"{response.text}"
            )

        try:
            proof = response.json()
        except ValueError as exc:
            raise IssuerError(
                "Issuer returned a non-JSON response "
                f"(correlation_id={correlation_id})"
            ) from exc

        if not isinstance(proof, dict):
            raise IssuerError(
                "Issuer returned a JSON value that is not an object "
                f"(correlation_id={correlation_id})"
            )

        logger.info(
            "Claim signed by issuer",
            extra={"correlation_id": correlation_id},
        )
        return proof

    def _post(
        self,
        client: httpx.Client,
        claim: Dict[str, Any],
        correlation_id: str,
    ) -> httpx.Response:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=8),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        return retrying(self._send, client, claim, correlation_id)

    def _send(
        self,
        client: httpx.Client,
        claim: Dict[str, Any],
        correlation_id: str,
    ) -> httpx.Response:
        return client.post(
            self.url,
            json=claim,
            headers={"X-Correlation-ID": correlation_id},
            timeout=self.timeout,
            follow_redirects=False,
        )


def build_issuer(config: NotaryConfig) -> HttpIssuer:
    """
    Construct the configured issuer.

    Raises:
        IssuerError:
            If no issuer endpoint is configured.
    """
    if config.issuer_url is None:
        raise IssuerError("NOTARY_ISSUER_URL is not set")

    return HttpIssuer(
        str(config.issuer_url),
        timeout=config.issuer_timeout_seconds,
        max_attempts=config.issuer_max_attempts,
    )
