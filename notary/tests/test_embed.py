"""
Tests for proof embedding.

Coverage matrix:

  Round trip        embed -> extract                       -> same proof object
  Layout            one appended page, sized like page 1   -> page_count + 1
  Registry          /Names/EmbeddedFiles and catalog /AF   -> both reference proof.json
  Replacement       embedding twice                        -> single proof entry
  Notice layout     short and long notices                 -> code below text, above margin
  Validation        bad address / template / proof         -> PresentationError, no output
  Scratch cleanup   failure mid-embed                      -> scratch directory removed
"""

import io
import json
from unittest.mock import patch

import pikepdf
import pytest

from notary.app.errors import PresentationError
from notary.app.schemas.documents import PROOF_ATTACHMENT_NAME, PROOF_MIME_TYPE
from notary.app.schemas.presentation import PresentationSpec
from notary.app.services.canonicalize import canonicalize
from notary.app.services.embed import attach_payload, embed_proof, serialize_proof
from notary.app.services.extract import extract_attachments, extract_payload
from notary.app.utils.pdf import serialize
from notary.tests.fixtures.fakes import FakeCodeRenderer
from notary.tests.fixtures.pdf_factory import text_pdf


ADDRESS = "bc1qexampleaddress0000000000000000000"


@pytest.fixture
def raw():
    return canonicalize(text_pdf("Hello", page_size=(420, 595)))


@pytest.fixture
def presentation():
    return PresentationSpec(payment_address=ADDRESS, issuer="Example Press")


@pytest.fixture
def proof(raw):
    return {
        "credentialSubject": {"contentFingerprint": raw.content_fingerprint},
        "issuer": "did:example:issuer",
    }


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------

def test_embedded_proof_round_trips(raw, proof, presentation):
    renderer = FakeCodeRenderer()

    notarized = embed_proof(raw, proof, presentation, code_renderer=renderer)

    payload = extract_payload(notarized.content)
    assert json.loads(payload.content.decode("utf-8")) == proof
    assert payload.mime_type == PROOF_MIME_TYPE
    assert renderer.addresses == [ADDRESS]


def test_exactly_one_page_is_appended_with_first_page_size(raw, proof, presentation):
    notarized = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    assert notarized.page_count == raw.page_count + 1
    assert notarized.appended_pages == 1
    assert notarized.content_fingerprint == raw.content_fingerprint

    with pikepdf.open(io.BytesIO(notarized.content)) as pdf:
        first, notice = pdf.pages[0], pdf.pages[-1]
        assert [float(v) for v in notice.mediabox] == [float(v) for v in first.mediabox]
        assert "/Im1" in notice.obj.Resources.XObject
        assert "/F1" in notice.obj.Resources.Font


def test_notice_page_carries_rendered_text(raw, proof, presentation):
    notarized = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    with pikepdf.open(io.BytesIO(notarized.content)) as pdf:
        content = pdf.pages[-1].obj.Contents.read_bytes()

    assert b"Example Press" in content
    assert ADDRESS.encode("ascii") in content


def test_proof_is_registered_in_name_tree_and_af(raw, proof, presentation):
    notarized = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    with pikepdf.open(io.BytesIO(notarized.content)) as pdf:
        af = pdf.Root.AF
        assert len(af) == 1
        assert str(af[0].UF) == PROOF_ATTACHMENT_NAME
        assert af[0].AFRelationship == pikepdf.Name.Data

        tree = pikepdf.NameTree(pdf.Root.Names.EmbeddedFiles)
        assert PROOF_ATTACHMENT_NAME in tree


def test_embedding_is_deterministic(raw, proof, presentation):
    first = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())
    second = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    assert first.content == second.content


def test_attach_payload_replaces_existing_entry(raw):
    with pikepdf.open(io.BytesIO(raw.content)) as pdf:
        attach_payload(pdf, name="proof.json", data=b'{"v":1}', mime_type="application/json")
        attach_payload(pdf, name="proof.json", data=b'{"v":2}', mime_type="application/json")
        data = serialize(pdf)

    with pikepdf.open(io.BytesIO(data)) as pdf:
        assert len(pdf.Root.AF) == 1

    payloads = [p for p in extract_attachments(data) if p.name == "proof.json"]
    assert len(payloads) == 1
    assert payloads[0].content == b'{"v":2}'


# ---------------------------------------------------------------------------
# Notice layout
# ---------------------------------------------------------------------------

def _notice_geometry(document_bytes: bytes):
    """Text block bottom and the code placement (x, y, size) on the notice page."""
    ops = []
    with pikepdf.open(io.BytesIO(document_bytes)) as pdf:
        for operands, operator in pikepdf.parse_content_stream(pdf.pages[-1]):
            numbers = [
                float(v)
                for v in operands
                if not isinstance(v, (pikepdf.Name, pikepdf.String))
            ]
            ops.append((operator, numbers))

    def first(name):
        return next(values for op, values in ops if op == pikepdf.Operator(name))

    leading = first("TL")[0]
    top = first("Td")[1]
    line_count = sum(1 for op, _ in ops if op == pikepdf.Operator("Tj"))
    size, _, _, _, x, y = first("cm")

    return top - leading * line_count, (x, y, size)


def test_code_sits_below_a_short_notice(raw, proof, presentation):
    notarized = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    text_bottom, (x, y, size) = _notice_geometry(notarized.content)

    assert size == 144
    assert y + size <= text_bottom
    assert y >= 50 - 1e-6


@pytest.mark.parametrize("note_lines", [20, 45, 120])
def test_long_notice_never_overlaps_the_code(raw, proof, note_lines):
    presentation = PresentationSpec(
        payment_address=ADDRESS,
        notes="\n".join(f"Note line {i}" for i in range(note_lines)),
    )

    notarized = embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())

    text_bottom, (x, y, size) = _notice_geometry(notarized.content)

    assert y + size <= text_bottom
    assert y >= 50 - 1e-6
    assert size >= 72 - 1e-6


# ---------------------------------------------------------------------------
# Validation before mutation
# ---------------------------------------------------------------------------

def test_undefined_placeholder_is_rejected(raw, proof):
    renderer = FakeCodeRenderer()
    presentation = PresentationSpec(
        payment_address=ADDRESS,
        notice_text="Send to {{ wallet }}",
    )

    with pytest.raises(PresentationError):
        embed_proof(raw, proof, presentation, code_renderer=renderer)

    assert renderer.addresses == []


def test_template_syntax_error_is_rejected(raw, proof):
    presentation = PresentationSpec(
        payment_address=ADDRESS,
        notice_text="{% if amount %}unterminated",
    )

    with pytest.raises(PresentationError):
        embed_proof(raw, proof, presentation, code_renderer=FakeCodeRenderer())


@pytest.mark.parametrize("proof_value", [["not", "an", "object"], {"x": float("nan")}, {"x": object()}])
def test_unserializable_proof_is_rejected(raw, presentation, proof_value):
    renderer = FakeCodeRenderer()

    with pytest.raises(PresentationError):
        embed_proof(raw, proof_value, presentation, code_renderer=renderer)

    assert renderer.addresses == []


def test_undecodable_code_image_is_rejected(raw, proof, presentation):
    with pytest.raises(PresentationError, match="could not be decoded"):
        embed_proof(
            raw,
            proof,
            presentation,
            code_renderer=FakeCodeRenderer(image=b"definitely not an image"),
        )


def test_serialize_proof_is_canonical():
    assert serialize_proof({"b": 1, "a": "é"}) == '{"a":"é","b":1}'.encode("utf-8")


# ---------------------------------------------------------------------------
# Scratch cleanup
# ---------------------------------------------------------------------------

def test_scratch_directory_is_removed_after_success(raw, proof, presentation, tmp_path):
    embed_proof(
        raw,
        proof,
        presentation,
        code_renderer=FakeCodeRenderer(),
        scratch_root=tmp_path,
    )

    assert list(tmp_path.iterdir()) == []


def test_scratch_directory_is_removed_after_failure(raw, proof, presentation, tmp_path):
    with patch(
        "notary.app.services.embed._append_notice_page",
        side_effect=RuntimeError("simulated crash"),
    ):
        with pytest.raises(RuntimeError, match="simulated crash"):
            embed_proof(
                raw,
                proof,
                presentation,
                code_renderer=FakeCodeRenderer(),
                scratch_root=tmp_path,
            )

    assert list(tmp_path.iterdir()) == []
