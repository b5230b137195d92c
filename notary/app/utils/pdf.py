"""
Shared pikepdf helpers.

Parse boundary:
    ``open_document`` is the single place where pikepdf.PdfError is
    translated into MalformedDocument. Callers must not catch broader
    exceptions around it; anything else is a logic error.
"""

from __future__ import annotations

from io import BytesIO

import pikepdf

from notary.app.errors import MalformedDocument


def resolve(obj):
    """
    Resolve a pikepdf indirect object to its concrete object.
    Safe to call on non-indirect values.
    """
    if (
        obj is not None
        and getattr(obj, "is_indirect", False)
        and hasattr(obj, "get_object")
    ):
        return obj.get_object()
    return obj


def open_document(document_bytes: bytes) -> pikepdf.Pdf:
    """
    Open PDF bytes, translating parse failures into MalformedDocument.

    The caller owns the returned Pdf and must close it (use it as a
    context manager).
    """
    if not isinstance(document_bytes, (bytes, bytearray)):
        raise TypeError(
            f"Expected document bytes, got {type(document_bytes).__name__}"
        )

    if not document_bytes.startswith(b"%PDF-"):
        raise MalformedDocument("Input does not begin with a PDF header")

    try:
        return pikepdf.open(BytesIO(bytes(document_bytes)))
    except pikepdf.PdfError as exc:
        raise MalformedDocument(f"Input is not a parseable PDF: {exc}") from exc


def serialize(pdf: pikepdf.Pdf) -> bytes:
    """
    Serialize with settings that make the output a pure function of the
    object graph: content-derived /ID, no object streams, stable stream
    compression.
    """
    buffer = BytesIO()
    pdf.save(
        buffer,
        deterministic_id=True,
        object_stream_mode=pikepdf.ObjectStreamMode.disable,
        compress_streams=True,
        recompress_flate=False,
    )
    return buffer.getvalue()


def serialize_stable(pdf: pikepdf.Pdf) -> bytes:
    """
    Serialize to a fixed point of ``serialize``.

    qpdf lays out a stream dictionary differently when it compresses the
    stream on write than when it passes already-compressed data through,
    so saving the output of a first save again does not reproduce it when
    the input held uncompressed streams. A second pass over the reopened
    output does. The trailer /ID is dropped between passes so that it is
    derived from the final bytes alone.
    """
    with pikepdf.open(BytesIO(serialize(pdf))) as reopened:
        if "/ID" in reopened.trailer:
            del reopened.trailer["/ID"]
        return serialize(reopened)
