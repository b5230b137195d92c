"""
Deterministic document canonicalization.

This module reduces an arbitrary PDF upload to a **RawDocument**: a
baseline serialization that contains only the original page content, so
that two semantically identical uploads from different producers hash
identically.

Determinism anchor:
    Every RawDocument is built on one frozen, versioned, zero-page
    template shipped with the package (``templates/blank.pdf``). A freshly
    constructed empty document may embed non-deterministic identifiers;
    the bundled template does not.

Per page, only the following survive:
    /MediaBox, /CropBox, /Rotate (resolved through /Parent inheritance),
    /Resources and /Contents.

Everything else is discarded: document info, XMP metadata, outlines,
annotations, page-level metadata, and the attachment registry.

The same page-copy procedure serves the Reconstructor, which rebuilds the
baseline from a notarized document by dropping the appended presentation
page(s). Both paths MUST produce byte-identical output for identical page
content.

Error handling policy:
    pikepdf.PdfError is the only parse-time exception translated into
    MalformedDocument. Any other exception is a logic error and propagates.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Optional

import pikepdf

from notary.app.errors import MalformedDocument
from notary.app.schemas.documents import RawDocument
from notary.app.utils.hashing import compute_content_fingerprint
from notary.app.utils.pdf import open_document, serialize_stable

logger = logging.getLogger(__name__)


TEMPLATE_VERSION = "1"
TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "blank.pdf"

_MAX_INHERITANCE_DEPTH = 64


# ------------------------------------------------------------------
# Template
# ------------------------------------------------------------------

@lru_cache(maxsize=1)
def load_template_bytes() -> bytes:
    """
    Load the bundled zero-page template once per process.

    Raises:
        RuntimeError:
            If the template is missing or is not an empty document. This
            is a packaging defect, not a property of any input.
    """
    if not TEMPLATE_PATH.is_file():
        raise RuntimeError(f"Canonical template not found: {TEMPLATE_PATH}")

    data = TEMPLATE_PATH.read_bytes()

    with pikepdf.open(BytesIO(data)) as template:
        if len(template.pages) != 0:
            raise RuntimeError(
                f"Canonical template v{TEMPLATE_VERSION} must have zero pages, "
                f"found {len(template.pages)}"
            )

    return data


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------

def _inherited(page_obj: pikepdf.Dictionary, key: str):
    """
    Look up an inheritable page attribute, walking the /Parent chain.

    Returns None if no node on the chain defines ``key``.
    """
    node = page_obj
    seen = set()

    for _ in range(_MAX_INHERITANCE_DEPTH):
        value = node.get(key)
        if value is not None:
            return value

        parent = node.get("/Parent")
        if not isinstance(parent, pikepdf.Dictionary):
            return None

        if parent.is_indirect:
            if parent.objgen in seen:
                return None
            seen.add(parent.objgen)

        node = parent

    return None


def _box(value, *, page_index: int, key: str) -> Optional[pikepdf.Array]:
    if value is None:
        return None

    if not isinstance(value, pikepdf.Array) or len(value) != 4:
        raise MalformedDocument(f"Page {page_index + 1} has an invalid {key}")

    return pikepdf.Array(list(value))


def _rotation(value, *, page_index: int) -> int:
    if value is None:
        return 0

    try:
        degrees = int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedDocument(
            f"Page {page_index + 1} has an invalid /Rotate"
        ) from exc

    return degrees % 360


def _copy_foreign(target: pikepdf.Pdf, source: pikepdf.Pdf, obj):
    """qpdf only copies indirect objects across documents."""
    if not obj.is_indirect:
        obj = source.make_indirect(obj)
    return target.copy_foreign(obj)


def _copy_page_content(
    target: pikepdf.Pdf,
    source: pikepdf.Pdf,
    page_index: int,
) -> None:
    """Append a content-only copy of ``source.pages[page_index]`` to ``target``."""
    page_obj = source.pages[page_index].obj

    media_box = _box(
        _inherited(page_obj, "/MediaBox"),
        page_index=page_index,
        key="/MediaBox",
    )
    if media_box is None:
        raise MalformedDocument(f"Page {page_index + 1} has no /MediaBox")

    new_page = pikepdf.Dictionary(
        Type=pikepdf.Name.Page,
        MediaBox=media_box,
    )

    crop_box = _box(
        _inherited(page_obj, "/CropBox"),
        page_index=page_index,
        key="/CropBox",
    )
    if crop_box is not None:
        new_page.CropBox = crop_box

    rotate = _rotation(_inherited(page_obj, "/Rotate"), page_index=page_index)
    if rotate:
        new_page.Rotate = rotate

    resources = _inherited(page_obj, "/Resources")
    if isinstance(resources, pikepdf.Dictionary):
        new_page.Resources = _copy_foreign(target, source, resources)
    else:
        new_page.Resources = pikepdf.Dictionary()

    contents = page_obj.get("/Contents")
    if isinstance(contents, (pikepdf.Stream, pikepdf.Array)):
        new_page.Contents = _copy_foreign(target, source, contents)

    target.pages.append(pikepdf.Page(target.make_indirect(new_page)))


def _build_raw(source: pikepdf.Pdf, keep_pages: int) -> RawDocument:
    with pikepdf.open(BytesIO(load_template_bytes())) as target:
        for index in range(keep_pages):
            _copy_page_content(target, source, index)

        content = serialize_stable(target)

    return RawDocument(
        content=content,
        page_count=keep_pages,
        content_fingerprint=compute_content_fingerprint(content),
    )


def _check_page_limit(page_count: int, max_pages: Optional[int]) -> None:
    if max_pages is not None and page_count > max_pages:
        raise MalformedDocument(
            f"Document has {page_count} pages, above the limit of {max_pages}"
        )


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def canonicalize(
    document_bytes: bytes,
    *,
    max_pages: Optional[int] = None,
) -> RawDocument:
    """
    Rebuild an uploaded PDF as a RawDocument.

    Args:
        document_bytes:
            Arbitrary uploaded PDF bytes.
        max_pages:
            Optional upper bound on the accepted page count.

    Raises:
        MalformedDocument:
            If the input cannot be parsed, has zero pages, or exceeds
            ``max_pages``.
    """
    with open_document(document_bytes) as source:
        page_count = len(source.pages)

        if page_count == 0:
            raise MalformedDocument("Document has zero pages")
        _check_page_limit(page_count, max_pages)

        raw = _build_raw(source, page_count)

    logger.debug(
        "Canonicalized %d page(s) to %d bytes (%s)",
        raw.page_count,
        len(raw.content),
        raw.content_fingerprint,
    )
    return raw


def reconstruct(
    notarized_bytes: bytes,
    *,
    appended_pages: int = 1,
    max_pages: Optional[int] = None,
) -> RawDocument:
    """
    Rebuild the canonical baseline of a notarized document.

    Exactly ``appended_pages`` trailing pages are dropped; the rest are
    re-copied against a fresh template with the canonicalizer's procedure.

    Raises:
        MalformedDocument:
            If the document cannot be parsed or no original page remains.
    """
    if appended_pages < 1:
        raise ValueError("appended_pages must be at least 1")

    with open_document(notarized_bytes) as source:
        page_count = len(source.pages)
        _check_page_limit(page_count, max_pages)

        keep = page_count - appended_pages
        if keep < 1:
            raise MalformedDocument(
                f"Notarized document has {page_count} page(s); expected more "
                f"than the {appended_pages} appended presentation page(s)"
            )

        return _build_raw(source, keep)
