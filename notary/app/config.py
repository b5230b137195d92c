"""
Centralized configuration for the notarization core.

Pydantic v2 settings management: values are read from ``NOTARY_*``
environment variables once, validated, and frozen for the lifetime of the
process. Configuration bounds resource usage only; it must never change
the bytes a canonicalization produces.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotaryConfig(BaseSettings):
    """
    Runtime settings parsed from the environment.

    Fails fast at construction if a limit is out of range or the scratch
    root is not a usable directory.
    """

    # ---------------------------------------------------------------------
    # Safety and resource limits
    # ---------------------------------------------------------------------

    max_document_size_mb: Annotated[
        int,
        Field(
            default=25,
            ge=1,
            le=200,
            description="Maximum accepted upload size in megabytes",
        ),
    ]

    max_page_count: Annotated[
        int,
        Field(
            default=500,
            ge=1,
            description="Maximum number of pages accepted for canonicalization",
        ),
    ]

    # ---------------------------------------------------------------------
    # Notarized document layout
    # ---------------------------------------------------------------------

    appended_pages: Annotated[
        int,
        Field(
            default=1,
            ge=1,
            le=1,
            description=(
                "Number of presentation pages appended after the original "
                "content. Changing this breaks verification of every "
                "previously notarized document."
            ),
        ),
    ]

    payment_code_box_size: Annotated[
        int,
        Field(
            default=4,
            ge=1,
            le=20,
            description="Pixel size of one payment-code module",
        ),
    ]

    # ---------------------------------------------------------------------
    # Issuer collaborator
    # ---------------------------------------------------------------------

    issuer_url: Annotated[
        Optional[AnyHttpUrl],
        Field(
            default=None,
            description="HTTPS endpoint of the credential issuer",
        ),
    ]

    issuer_timeout_seconds: Annotated[
        float,
        Field(
            default=30.0,
            gt=0,
            le=300,
            description="Upper bound on a single issuer call",
        ),
    ]

    issuer_max_attempts: Annotated[
        int,
        Field(
            default=3,
            ge=1,
            le=10,
            description="Attempts per issuer call when the transport fails",
        ),
    ]

    # ---------------------------------------------------------------------
    # Scratch storage
    # ---------------------------------------------------------------------

    scratch_root: Annotated[
        Optional[Path],
        Field(
            default=None,
            description=(
                "Parent directory for per-invocation scratch directories. "
                "Defaults to the system temporary directory."
            ),
        ),
    ]

    @field_validator("scratch_root")
    @classmethod
    def scratch_root_must_be_directory(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return v
        v = v.expanduser().resolve()
        if not v.is_dir():
            raise ValueError(f"Configured scratch_root is not a directory: {v}")
        return v

    @property
    def max_document_size_bytes(self) -> int:
        return self.max_document_size_mb * 1024 * 1024

    model_config = SettingsConfigDict(
        env_prefix="NOTARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


@lru_cache(maxsize=1)
def get_config() -> NotaryConfig:
    """Process-wide settings singleton."""
    return NotaryConfig()
