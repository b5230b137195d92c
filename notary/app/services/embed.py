"""
Proof embedding.

Transforms a RawDocument into a **NotarizedDocument** by:
- appending one presentation page sized like the first page,
- printing the notice text on it,
- drawing the payment-code image produced by the image generator,
- storing the proof object as the reserved embedded file.

The content fingerprint is computed before this step and is never
invalidated by it: only pages AFTER the original content are added, and the
Reconstructor drops exactly those pages again.

Embedding is all-or-nothing. The notice text and the proof are validated
before the document is opened for mutation. Layout limits depend on the
first page and are checked while the notice page is composed. No partial
NotarizedDocument is ever returned.

Notice layout: the payment code is drawn wholly below the text block and
above the bottom margin. A long notice first shrinks the code, down to a
minimum size, and then the text.
"""

from __future__ import annotations

import json
import logging
from decimal import ROUND_DOWN, Decimal
from io import BytesIO
from typing import List, Optional

import pikepdf
from PIL import Image, UnidentifiedImageError

from notary.app.errors import MalformedDocument, PresentationError
from notary.app.schemas.documents import (
    PROOF_ATTACHMENT_NAME,
    PROOF_MIME_TYPE,
    NotarizedDocument,
    ProofObject,
    RawDocument,
)
from notary.app.schemas.presentation import PresentationSpec
from notary.app.services.notice import (
    PaymentCodeRenderer,
    QrPaymentCodeRenderer,
    compose_notice_lines,
)
from notary.app.utils.pdf import open_document, resolve, serialize
from notary.app.utils.scratch import scratch_directory

logger = logging.getLogger(__name__)


APPENDED_PAGES = 1

_FONT_NAME = pikepdf.Name("/F1")
_IMAGE_NAME = pikepdf.Name("/Im1")
_FONT_SIZE = 12
_LEADING = 14
_MARGIN = 50
_CODE_SIZE = 144
_MIN_CODE_SIZE = 72


# ------------------------------------------------------------------
# Proof serialization
# ------------------------------------------------------------------

def serialize_proof(proof: ProofObject) -> bytes:
    """
    Serialize a proof object to canonical UTF-8 JSON bytes.

    Raises:
        PresentationError:
            If the proof is not a JSON object or cannot be serialized.
    """
    if not isinstance(proof, dict):
        raise PresentationError(
            f"Proof must be a JSON object, got {type(proof).__name__}"
        )

    try:
        return json.dumps(
            proof,
            sort_keys=True,
            ensure_ascii=False,
            separators=(",", ":"),
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise PresentationError(f"Proof is not JSON-serializable: {exc}") from exc


# ------------------------------------------------------------------
# Attachment registry
# ------------------------------------------------------------------

def _filespec_name(filespec) -> Optional[str]:
    for key in ("/UF", "/F"):
        value = filespec.get(key)
        if isinstance(value, pikepdf.String):
            return str(value)
    return None


def attach_payload(
    pdf: pikepdf.Pdf,
    *,
    name: str,
    data: bytes,
    mime_type: str,
    description: Optional[str] = None,
) -> None:
    """
    Store ``data`` as an embedded file registered under ``name``.

    The file is registered in /Names -> /EmbeddedFiles and in the catalog
    /AF array with AFRelationship=/Data. An existing entry with the same
    name is replaced, so at most one such payload exists per document.
    """
    embedded = pdf.make_indirect(pikepdf.Stream(pdf, data))
    embedded.Type = pikepdf.Name.EmbeddedFile
    embedded.Subtype = pikepdf.Name("/" + mime_type)
    embedded.Params = pikepdf.Dictionary(Size=len(data))

    filespec = pikepdf.Dictionary(
        Type=pikepdf.Name.Filespec,
        F=pikepdf.String(name),
        UF=pikepdf.String(name),
        AFRelationship=pikepdf.Name.Data,
        EF=pikepdf.Dictionary(F=embedded, UF=embedded),
    )
    if description:
        filespec.Desc = pikepdf.String(description)
    filespec = pdf.make_indirect(filespec)

    # /Names -> /EmbeddedFiles
    if not isinstance(resolve(pdf.Root.get("/Names")), pikepdf.Dictionary):
        pdf.Root.Names = pdf.make_indirect(pikepdf.Dictionary())
    names = resolve(pdf.Root.Names)

    ef_tree = resolve(names.get("/EmbeddedFiles"))
    if isinstance(ef_tree, pikepdf.Dictionary):
        tree = pikepdf.NameTree(ef_tree)
    else:
        tree = pikepdf.NameTree.new(pdf)
        names.EmbeddedFiles = tree.obj

    tree[name] = filespec

    # Catalog /AF
    associated: List = []
    existing_af = resolve(pdf.Root.get("/AF"))
    if isinstance(existing_af, pikepdf.Array):
        for entry in existing_af:
            fs = resolve(entry)
            if isinstance(fs, pikepdf.Dictionary) and _filespec_name(fs) == name:
                continue
            associated.append(entry)
    associated.append(filespec)
    pdf.Root.AF = pikepdf.Array(associated)


# ------------------------------------------------------------------
# Presentation page
# ------------------------------------------------------------------

def _load_code_image(pdf: pikepdf.Pdf, image_bytes: bytes):
    """Convert raster bytes into a grayscale image XObject."""
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            gray = image.convert("L")
    except (UnidentifiedImageError, OSError) as exc:
        raise PresentationError(
            f"Payment code image could not be decoded: {exc}"
        ) from exc

    xobject = pdf.make_indirect(
        pikepdf.Stream(
            pdf,
            gray.tobytes(),
            Type=pikepdf.Name.XObject,
            Subtype=pikepdf.Name.Image,
            Width=gray.width,
            Height=gray.height,
            ColorSpace=pikepdf.Name.DeviceGray,
            BitsPerComponent=8,
        )
    )
    return xobject


def _page_size(page: pikepdf.Page):
    box = page.mediabox
    llx, lly, urx, ury = (Decimal(str(v)) for v in box)
    return urx - llx, ury - lly


def _text_scale(line_count: int, height: Decimal) -> Decimal:
    """
    Factor applied to font size and leading so that the text block leaves
    room for a code of at least ``_MIN_CODE_SIZE`` above the bottom margin.
    """
    needed = 4 * _FONT_SIZE + _LEADING * (line_count + 1)
    available = height - _MARGIN - _MIN_CODE_SIZE
    if available <= 0:
        raise PresentationError(
            f"Page height {height} is too small for the notice page"
        )

    if needed <= available:
        return Decimal(1)

    scale = (available / needed).quantize(Decimal("0.001"), rounding=ROUND_DOWN)
    if scale <= 0:
        raise PresentationError(
            f"Notice of {line_count} lines does not fit on the notice page"
        )
    return scale


def _notice_content(
    lines: List[str],
    *,
    width: Decimal,
    height: Decimal,
) -> bytes:
    scale = _text_scale(len(lines), height)
    font_size = _FONT_SIZE * scale
    leading = _LEADING * scale
    top = height - 4 * font_size

    instructions = [
        ([], pikepdf.Operator("BT")),
        ([_FONT_NAME, font_size], pikepdf.Operator("Tf")),
        ([leading], pikepdf.Operator("TL")),
        ([_MARGIN, top], pikepdf.Operator("Td")),
    ]
    for line in lines:
        encoded = line.encode("cp1252", errors="replace")
        instructions.append(([pikepdf.String(encoded)], pikepdf.Operator("Tj")))
        instructions.append(([], pikepdf.Operator("T*")))
    instructions.append(([], pikepdf.Operator("ET")))

    # The code sits wholly below the text and above the bottom margin.
    text_bottom = top - leading * (len(lines) + 1)
    code_size = min(Decimal(_CODE_SIZE), text_bottom - _MARGIN)
    code_y = text_bottom - code_size
    code_x = min(Decimal(_MARGIN), max(Decimal(0), width - code_size))

    instructions.extend(
        [
            ([], pikepdf.Operator("q")),
            ([code_size, 0, 0, code_size, code_x, code_y], pikepdf.Operator("cm")),
            ([_IMAGE_NAME], pikepdf.Operator("Do")),
            ([], pikepdf.Operator("Q")),
        ]
    )

    return pikepdf.unparse_content_stream(instructions)


def _append_notice_page(
    pdf: pikepdf.Pdf,
    *,
    lines: List[str],
    code_image,
) -> None:
    width, height = _page_size(pdf.pages[0])

    font = pdf.make_indirect(
        pikepdf.Dictionary(
            Type=pikepdf.Name.Font,
            Subtype=pikepdf.Name.Type1,
            BaseFont=pikepdf.Name.Helvetica,
            Encoding=pikepdf.Name.WinAnsiEncoding,
        )
    )

    page = pdf.add_blank_page(page_size=(width, height))
    page.obj.Resources = pikepdf.Dictionary(
        Font=pikepdf.Dictionary(F1=font),
        XObject=pikepdf.Dictionary(Im1=code_image),
    )
    page.obj.Contents = pdf.make_indirect(
        pikepdf.Stream(
            pdf,
            _notice_content(
                lines,
                width=width,
                height=height,
            ),
        )
    )


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def embed_proof(
    raw: RawDocument,
    proof: ProofObject,
    presentation: PresentationSpec,
    *,
    code_renderer: Optional[PaymentCodeRenderer] = None,
    scratch_root=None,
) -> NotarizedDocument:
    """
    Produce a NotarizedDocument from a RawDocument and a signed proof.

    Args:
        raw:
            Canonical baseline whose fingerprint the proof attests.
        proof:
            Externally signed proof object (JSON object).
        presentation:
            Notice and payment-code parameters.
        code_renderer:
            Image generator collaborator. Defaults to a QR code renderer.
        scratch_root:
            Optional parent directory for the per-invocation scratch space.

    Raises:
        PresentationError:
            If the notice template, payment code or proof is invalid.
        MalformedDocument:
            If ``raw`` cannot be reopened for page-append.
    """
    renderer = code_renderer or QrPaymentCodeRenderer()

    # --------------------------------------------------------------
    # Validation (before any mutation)
    # --------------------------------------------------------------
    lines = compose_notice_lines(
        presentation,
        content_fingerprint=raw.content_fingerprint,
    )
    proof_bytes = serialize_proof(proof)

    # --------------------------------------------------------------
    # Scratch-scoped composition
    # --------------------------------------------------------------
    with scratch_directory(root=scratch_root, prefix="notary-embed-") as scratch:
        with open_document(raw.content) as pdf:
            if len(pdf.pages) == 0:
                raise MalformedDocument("RawDocument has zero pages")

            code_path = scratch / "payment-code.png"
            code_path.write_bytes(renderer.render(presentation.payment_address))
            code_image = _load_code_image(pdf, code_path.read_bytes())

            _append_notice_page(pdf, lines=lines, code_image=code_image)

            attach_payload(
                pdf,
                name=PROOF_ATTACHMENT_NAME,
                data=proof_bytes,
                mime_type=PROOF_MIME_TYPE,
                description="Notarization proof",
            )

            content = serialize(pdf)
            page_count = len(pdf.pages)

    logger.info(
        "Embedded proof into %d-page document (%s)",
        page_count,
        raw.content_fingerprint,
    )

    return NotarizedDocument(
        content=content,
        page_count=page_count,
        appended_pages=APPENDED_PAGES,
        content_fingerprint=raw.content_fingerprint,
    )
