"""
Tests for presentation parameters and notice text composition.
"""

import io

import pytest
from PIL import Image

from notary.app.errors import PresentationError
from notary.app.schemas.presentation import PresentationSpec
from notary.app.services.notice import (
    QrPaymentCodeRenderer,
    compose_notice_lines,
    render_notice_text,
)


ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


# ---------------------------------------------------------------------------
# PresentationSpec validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "address",
    ["", "   ", "has space", "tab\there", "x" * 257, "naïve"],
)
def test_invalid_payment_address_is_rejected(address):
    with pytest.raises(PresentationError):
        PresentationSpec.from_options({"payment_address": address})


def test_payment_address_is_stripped():
    spec = PresentationSpec.from_options({"payment_address": f"  {ADDRESS}\n"})

    assert spec.payment_address == ADDRESS


def test_donation_split_over_100_is_rejected():
    with pytest.raises(PresentationError, match="above 100"):
        PresentationSpec.from_options(
            {
                "payment_address": ADDRESS,
                "donation_split": [
                    {"label": "Author", "percentage": 70},
                    {"label": "Editor", "percentage": 40},
                ],
            }
        )


@pytest.mark.parametrize("percentage", [0, -5, 100.5])
def test_donation_share_out_of_range_is_rejected(percentage):
    with pytest.raises(PresentationError):
        PresentationSpec.from_options(
            {
                "payment_address": ADDRESS,
                "donation_split": [{"label": "Author", "percentage": percentage}],
            }
        )


def test_unknown_option_is_rejected():
    with pytest.raises(PresentationError):
        PresentationSpec.from_options({"payment_address": ADDRESS, "colour": "red"})


def test_blank_notice_text_is_rejected():
    with pytest.raises(PresentationError):
        PresentationSpec.from_options({"payment_address": ADDRESS, "notice_text": "  "})


# ---------------------------------------------------------------------------
# Notice text
# ---------------------------------------------------------------------------

def test_default_notice_mentions_issuer_and_address():
    spec = PresentationSpec(payment_address=ADDRESS, issuer="Example Press", amount="3 EUR")

    text = render_notice_text(spec)

    assert "Example Press" in text
    assert ADDRESS in text
    assert "3 EUR" in text


def test_custom_template_sees_fingerprint():
    spec = PresentationSpec(
        payment_address=ADDRESS,
        notice_text="Fingerprint: {{ content_fingerprint }}",
    )

    text = render_notice_text(spec, content_fingerprint="SHA-256:" + "a" * 64)

    assert text == "Fingerprint: SHA-256:" + "a" * 64


def test_sandbox_blocks_attribute_escape():
    spec = PresentationSpec(
        payment_address=ADDRESS,
        notice_text="{{ payment_address.__class__.__mro__[1].__subclasses__() }}",
    )

    with pytest.raises(PresentationError):
        render_notice_text(spec)


def test_lines_are_ordered_donations_notes_notice():
    spec = PresentationSpec(
        payment_address=ADDRESS,
        notice_text="Thank you.",
        donation_split=[
            {"label": "Author", "percentage": 75},
            {"label": "Translator", "percentage": 12.5},
        ],
        notes="First edition.\nTypeset by hand.",
    )

    lines = compose_notice_lines(spec)

    assert lines == [
        "Author: 75%",
        "Translator: 12.5%",
        "",
        "Publisher notes:",
        "First edition.",
        "Typeset by hand.",
        "",
        "Thank you.",
    ]


def test_long_lines_are_wrapped():
    spec = PresentationSpec(payment_address=ADDRESS, notice_text="word " * 60)

    lines = compose_notice_lines(spec, max_chars=40)

    assert len(lines) > 1
    assert all(len(line) <= 40 for line in lines)


# ---------------------------------------------------------------------------
# Payment code
# ---------------------------------------------------------------------------

def test_qr_renderer_produces_png():
    data = QrPaymentCodeRenderer(box_size=2, border=1).render(ADDRESS)

    assert data.startswith(b"\x89PNG")
    with Image.open(io.BytesIO(data)) as image:
        assert image.width == image.height
