"""
Notarization pipeline facade.

Ties the stages together for a caller (API layer, CLI, batch job):

    prepare   : upload bytes -> RawDocument (canonical, fingerprinted)
    notarize  : RawDocument  -> signed claim -> NotarizedDocument
    verify    : notarized bytes -> VerificationResult

The pipeline owns no state beyond its configuration and collaborators.
Every call is independent and may run concurrently with any other.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from notary.app.config import NotaryConfig
from notary.app.coordinator.verifier import (
    find_fingerprint_claim,
    fingerprints_match,
    verify as verify_document,
)
from notary.app.errors import IssuerError, MalformedDocument
from notary.app.schemas.documents import NotarizedDocument, RawDocument
from notary.app.schemas.presentation import PresentationSpec
from notary.app.schemas.verification import VerificationResult
from notary.app.services.canonicalize import canonicalize, load_template_bytes
from notary.app.services.embed import embed_proof
from notary.app.services.issuer import Issuer, build_content_claim
from notary.app.services.notice import PaymentCodeRenderer, QrPaymentCodeRenderer
from notary.app.utils.hashing import compute_content_fingerprint

logger = logging.getLogger(__name__)


ARTIFACT_KINDS = ("raw", "notarized")

_SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class NotaryPipeline:
    """
    Stateless orchestrator over the notarization stages.

    The canonical template is loaded at construction so that a packaging
    defect fails at startup instead of on the first request.
    """

    def __init__(
        self,
        config: NotaryConfig,
        issuer: Issuer,
        code_renderer: Optional[PaymentCodeRenderer] = None,
    ):
        self._config = config
        self._issuer = issuer
        self._code_renderer = code_renderer or QrPaymentCodeRenderer(
            box_size=config.payment_code_box_size,
        )

        load_template_bytes()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def prepare(self, document_bytes: bytes) -> RawDocument:
        """
        Canonicalize an upload.

        Raises:
            MalformedDocument:
                If the upload is too large, unparseable, empty or has too
                many pages.
        """
        if len(document_bytes) > self._config.max_document_size_bytes:
            raise MalformedDocument(
                f"Document is {len(document_bytes)} bytes, above the limit of "
                f"{self._config.max_document_size_mb} MB"
            )

        raw = canonicalize(
            document_bytes,
            max_pages=self._config.max_page_count,
        )

        logger.info(
            "Prepared raw document",
            extra={
                "content_fingerprint": raw.content_fingerprint,
                "page_count": raw.page_count,
            },
        )
        return raw

    def notarize(
        self,
        raw: RawDocument,
        presentation: PresentationSpec,
        *,
        subject_id: str,
        title: Optional[str] = None,
        extra_claims: Optional[Dict[str, Any]] = None,
    ) -> NotarizedDocument:
        """
        Sign a claim over ``raw`` and embed the resulting proof.

        Raises:
            IssuerError:
                If the issuer fails or returns a proof for a different
                fingerprint.
            PresentationError:
                If the presentation parameters or proof are invalid.
        """
        issuer_id = presentation.issuer or subject_id

        claim = build_content_claim(
            raw,
            issuer_id=issuer_id,
            subject_id=subject_id,
            title=title or presentation.title,
            extra=extra_claims,
        )

        proof = self._issuer.sign(claim)
        self._check_proof_binding(raw, proof)

        notarized = embed_proof(
            raw,
            proof,
            presentation,
            code_renderer=self._code_renderer,
            scratch_root=self._config.scratch_root,
        )

        logger.info(
            "Notarized document",
            extra={
                "content_fingerprint": raw.content_fingerprint,
                "notarized_fingerprint": compute_content_fingerprint(
                    notarized.content
                ),
            },
        )
        return notarized

    def verify(self, notarized_bytes: bytes) -> VerificationResult:
        """Classify a submitted document. Never raises for input defects."""
        return verify_document(
            notarized_bytes,
            appended_pages=self._config.appended_pages,
            max_pages=self._config.max_page_count + self._config.appended_pages,
            max_bytes=self._config.max_document_size_bytes,
        )

    @staticmethod
    def artifact_filename(slug: str, kind: str) -> str:
        """
        Output file name for an artifact, e.g. ``"lease-2024-notarized.pdf"``.

        The slug only names the output; it never selects a path.

        Raises:
            ValueError:
                If the slug is not a plain file-name stem or ``kind`` is
                unknown.
        """
        if kind not in ARTIFACT_KINDS:
            raise ValueError(f"Unknown artifact kind '{kind}'")

        if not isinstance(slug, str) or not _SLUG_RE.match(slug) or ".." in slug:
            raise ValueError(f"Invalid artifact slug: {slug!r}")

        return f"{slug}-{kind}.pdf"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_proof_binding(raw: RawDocument, proof: Dict[str, Any]) -> None:
        claimed = find_fingerprint_claim(proof)
        if claimed is None or not fingerprints_match(
            claimed, raw.content_fingerprint
        ):
            raise IssuerError(
                "Issuer proof does not attest the prepared content fingerprint "
                f"(expected {raw.content_fingerprint}, got {claimed})"
            )
