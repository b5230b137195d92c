"""
Presentation parameters for the appended notice page.

These values affect the visual notice only. They never influence the
content fingerprint, which is computed before any page is appended.
"""

from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notary.app.errors import PresentationError


_PAYMENT_ADDRESS_RE = re.compile(r"^[\x21-\x7e]{1,256}$")


DEFAULT_NOTICE_TEXT = (
    "This document was notarized by {{ issuer or 'the issuing service' }}, which\n"
    "cryptographically verifies the publisher profile and the content as authentic.\n"
    "{% if amount %}The publisher suggests a donation of {{ amount }}"
    "{% if recipient %} to {{ recipient }}{% endif %}.\n{% endif %}"
    "{% if profile_url %}Verified profile:\n\n{{ profile_url }}\n\n{% endif %}"
    "To make a donation, send funds to the following address:\n\n"
    "{{ payment_address }}\n\n"
    "Or use the code below:"
)


class DonationShare(BaseModel):
    """One line of the human-readable donation breakdown."""

    label: str = Field(..., min_length=1, max_length=120)
    percentage: float = Field(..., gt=0, le=100)

    model_config = ConfigDict(frozen=True)


class PresentationSpec(BaseModel):
    """
    Recognized embed options.

    ``notice_text`` is a Jinja2 template. Undefined placeholders are
    rejected at render time with ``PresentationError``.
    """

    payment_address: str
    notice_text: str = DEFAULT_NOTICE_TEXT

    issuer: Optional[str] = None
    recipient: Optional[str] = None
    amount: Optional[str] = None
    profile_url: Optional[str] = None
    title: Optional[str] = None

    donation_split: Optional[List[DonationShare]] = None
    notes: Optional[str] = None

    @field_validator("payment_address")
    @classmethod
    def payment_address_must_be_printable(cls, v: str) -> str:
        v = v.strip()
        if not _PAYMENT_ADDRESS_RE.match(v):
            raise ValueError(
                "payment_address must be 1-256 printable ASCII characters "
                "without whitespace"
            )
        return v

    @field_validator("notice_text")
    @classmethod
    def notice_text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("notice_text must not be empty")
        return v

    @model_validator(mode="after")
    def donation_split_within_total(self):
        if self.donation_split:
            total = sum(share.percentage for share in self.donation_split)
            if total > 100 + 1e-9:
                raise ValueError(
                    f"donation_split percentages sum to {total:g}, above 100"
                )
        return self

    @classmethod
    def from_options(cls, data: dict) -> "PresentationSpec":
        """Validate raw options, mapping validation failures to PresentationError."""
        try:
            return cls.model_validate(data)
        except ValueError as exc:
            raise PresentationError(str(exc)) from exc

    model_config = ConfigDict(frozen=True, extra="forbid")
