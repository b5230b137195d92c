"""
Notice page composition.

This module is presentation-only. It turns a validated PresentationSpec
into the lines of text printed on the appended notice page, and provides
the default payment-code image generator.

Design guarantees:
- Deterministic template rendering (sandboxed Jinja2 + StrictUndefined)
- Undefined placeholders and template syntax errors are rejected with
  PresentationError before any document is touched
- No fingerprinting or proof handling occurs in this module
"""

from __future__ import annotations

import textwrap
from io import BytesIO
from typing import Any, Dict, List, Optional, Protocol

import qrcode
from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from notary.app.errors import PresentationError
from notary.app.schemas.presentation import PresentationSpec


_ENV = SandboxedEnvironment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=False,
)


# ------------------------------------------------------------------
# Image generator collaborator
# ------------------------------------------------------------------

class PaymentCodeRenderer(Protocol):
    """
    Renders a scannable code for a payment address.

    Implementations return raster image bytes (PNG or any format Pillow
    can open).
    """

    def render(self, address: str) -> bytes:
        ...


class QrPaymentCodeRenderer:
    """Default renderer: a black-on-white QR code encoded as PNG."""

    def __init__(self, *, box_size: int = 4, border: int = 4) -> None:
        self._box_size = box_size
        self._border = border

    def render(self, address: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self._box_size,
            border=self._border,
        )
        qr.add_data(address)
        qr.make(fit=True)

        image = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


# ------------------------------------------------------------------
# Notice text
# ------------------------------------------------------------------

def _donation_lines(presentation: PresentationSpec) -> List[str]:
    if not presentation.donation_split:
        return []

    lines = [
        f"{share.label}: {share.percentage:g}%"
        for share in presentation.donation_split
    ]
    lines.append("")
    return lines


def _notes_lines(presentation: PresentationSpec) -> List[str]:
    if not presentation.notes or not presentation.notes.strip():
        return []

    return ["Publisher notes:", *presentation.notes.strip().splitlines(), ""]


def render_notice_text(
    presentation: PresentationSpec,
    *,
    content_fingerprint: Optional[str] = None,
) -> str:
    """
    Fill the notice template with the presentation context.

    Raises:
        PresentationError:
            If the template is syntactically invalid, references an
            undefined placeholder, or violates the sandbox.
    """
    context: Dict[str, Any] = {
        "issuer": presentation.issuer,
        "recipient": presentation.recipient,
        "amount": presentation.amount,
        "payment_address": presentation.payment_address,
        "profile_url": presentation.profile_url,
        "title": presentation.title,
        "content_fingerprint": content_fingerprint,
    }

    try:
        return _ENV.from_string(presentation.notice_text).render(context)
    except TemplateError as exc:
        raise PresentationError(f"Notice template could not be rendered: {exc}") from exc


def compose_notice_lines(
    presentation: PresentationSpec,
    *,
    content_fingerprint: Optional[str] = None,
    max_chars: int = 90,
) -> List[str]:
    """
    Produce the final list of printed lines.

    Order: donation breakdown, publisher notes, then the rendered notice.
    Long lines are wrapped at ``max_chars``; blank lines are preserved.
    """
    raw_lines = [
        *_donation_lines(presentation),
        *_notes_lines(presentation),
        *render_notice_text(
            presentation,
            content_fingerprint=content_fingerprint,
        ).splitlines(),
    ]

    lines: List[str] = []
    for line in raw_lines:
        if not line.strip():
            lines.append("")
            continue
        lines.extend(
            textwrap.wrap(
                line,
                width=max_chars,
                break_long_words=True,
                break_on_hyphens=False,
            )
        )

    return lines
