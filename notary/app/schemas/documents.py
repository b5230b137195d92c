"""
Document value objects exchanged between pipeline stages.

All models are frozen: a stage owns its output until it hands it to the
next stage, and nothing downstream may mutate it. A changed upload
produces a new RawDocument; re-notarizing produces a new
NotarizedDocument.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notary.app.utils.hashing import is_content_fingerprint


# Reserved attachment name shared by embed and extract. Changing it breaks
# verification of every previously notarized document.
PROOF_ATTACHMENT_NAME = "proof.json"
PROOF_MIME_TYPE = "application/json"


# A ProofObject is an externally signed JSON object. The core only checks
# that it is a JSON object and that it carries a fingerprint claim.
ProofObject = Dict[str, Any]


def _validate_fingerprint(v: str) -> str:
    if not is_content_fingerprint(v):
        raise ValueError(f"Malformed content fingerprint: {v!r}")
    return v


class RawDocument(BaseModel):
    """
    Canonical baseline of an uploaded document.

    Identical page content yields identical ``content`` and
    ``content_fingerprint``, regardless of the original producer.
    """

    content: bytes = Field(..., repr=False)
    page_count: int = Field(..., ge=1)
    content_fingerprint: str

    @field_validator("content_fingerprint")
    @classmethod
    def fingerprint_must_be_well_formed(cls, v: str) -> str:
        return _validate_fingerprint(v)

    model_config = ConfigDict(frozen=True)


class NotarizedDocument(BaseModel):
    """
    Canonical pages, appended presentation page(s), and one embedded proof.

    ``content_fingerprint`` is the fingerprint of the RawDocument that was
    notarized. It is never recomputed over these bytes.
    """

    content: bytes = Field(..., repr=False)
    page_count: int = Field(..., ge=2)
    appended_pages: int = Field(1, ge=1)
    content_fingerprint: str

    @field_validator("content_fingerprint")
    @classmethod
    def fingerprint_must_be_well_formed(cls, v: str) -> str:
        return _validate_fingerprint(v)

    model_config = ConfigDict(frozen=True)


class EmbeddedPayload(BaseModel):
    """A named file stored in a document's attachment registry."""

    name: str
    mime_type: Optional[str] = None
    content: bytes = Field(..., repr=False)

    model_config = ConfigDict(frozen=True)
