"""
Embedded payload extraction from the PDF attachment registry.

This module locates named embedded files via the document catalog's
/Names -> /EmbeddedFiles name tree. It is a structural traversal, not a
full document interpretation:

- Every level (/Names, /EmbeddedFiles, /Kids, /Names pairs, /EF) may be
  absent. Absence means "not found", never a crash.
- The tree is walked with an explicit worklist keyed by object identity,
  bounded in depth and guarded against reference cycles.
- Stream filters declared on the embedded file are applied on read.

Name decoding:
    Names are decoded from the raw string bytes. A UTF-16BE byte-order mark
    selects UTF-16; a UTF-8 byte-order mark or a valid UTF-8 sequence
    (strict continuation-byte rules) selects UTF-8; anything else is read as
    PDFDocEncoding.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

import pikepdf
import pikepdf.codec  # noqa: F401  registers the "pdfdoc" codec

from notary.app.errors import PayloadNotFound
from notary.app.schemas.documents import PROOF_ATTACHMENT_NAME, EmbeddedPayload
from notary.app.utils.pdf import open_document, resolve

logger = logging.getLogger(__name__)


_MAX_TREE_DEPTH = 32


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def decode_name(raw: bytes) -> str:
    """Decode a PDF text string used as a name-tree key."""
    if raw.startswith(b"\xfe\xff"):
        return raw[2:].decode("utf-16-be", errors="replace")

    if raw.startswith(b"\xef\xbb\xbf"):
        return raw[3:].decode("utf-8", errors="replace")

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass

    try:
        return raw.decode("pdfdoc")
    except ValueError:
        return raw.decode("latin-1")


def _iter_name_tree(root) -> Iterator[Tuple[bytes, object]]:
    """
    Yield (raw key bytes, resolved value) pairs in document order.

    Malformed nodes are skipped rather than raised on.
    """
    worklist: List[Tuple[object, int]] = [(root, 0)]
    visited = set()

    while worklist:
        node, depth = worklist.pop()
        node = resolve(node)

        if not isinstance(node, pikepdf.Dictionary):
            continue

        if node.is_indirect:
            if node.objgen in visited:
                logger.warning("Name tree cycle detected at object %s", node.objgen)
                continue
            visited.add(node.objgen)

        names = resolve(node.get("/Names"))
        if isinstance(names, pikepdf.Array):
            for i in range(0, len(names) - 1, 2):
                key = resolve(names[i])
                if isinstance(key, pikepdf.String):
                    yield bytes(key), resolve(names[i + 1])

        kids = resolve(node.get("/Kids"))
        if isinstance(kids, pikepdf.Array):
            if depth + 1 > _MAX_TREE_DEPTH:
                logger.warning("Name tree deeper than %d levels; truncated", _MAX_TREE_DEPTH)
                continue
            # Reversed so that popping preserves left-to-right order.
            for kid in reversed(list(kids)):
                worklist.append((kid, depth + 1))


def _embedded_files_root(pdf: pikepdf.Pdf):
    names = resolve(pdf.Root.get("/Names"))
    if not isinstance(names, pikepdf.Dictionary):
        return None

    tree = resolve(names.get("/EmbeddedFiles"))
    if not isinstance(tree, pikepdf.Dictionary):
        return None

    return tree


def _embedded_stream(filespec) -> Optional[pikepdf.Stream]:
    if not isinstance(filespec, pikepdf.Dictionary):
        return None

    ef = resolve(filespec.get("/EF"))
    if not isinstance(ef, pikepdf.Dictionary):
        return None

    for key in ("/UF", "/F"):
        stream = resolve(ef.get(key))
        if isinstance(stream, pikepdf.Stream):
            return stream

    return None


def _mime_type(stream: pikepdf.Stream) -> Optional[str]:
    subtype = stream.get("/Subtype")
    if isinstance(subtype, pikepdf.Name):
        return str(subtype)[1:]
    return None


def _read_payload(name: str, filespec) -> Optional[EmbeddedPayload]:
    stream = _embedded_stream(filespec)
    if stream is None:
        return None

    try:
        data = stream.read_bytes()
    except pikepdf.PdfError as exc:
        logger.warning("Embedded file '%s' could not be decoded: %s", name, exc)
        return None

    return EmbeddedPayload(
        name=name,
        mime_type=_mime_type(stream),
        content=data,
    )


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def extract_attachments(document_bytes: bytes) -> List[EmbeddedPayload]:
    """
    Return every decodable embedded file registered in the name tree.

    Raises:
        MalformedDocument:
            If the container itself cannot be parsed.
    """
    payloads: List[EmbeddedPayload] = []

    with open_document(document_bytes) as pdf:
        root = _embedded_files_root(pdf)
        if root is None:
            return payloads

        for raw_key, filespec in _iter_name_tree(root):
            payload = _read_payload(decode_name(raw_key), filespec)
            if payload is not None:
                payloads.append(payload)

    return payloads


def extract_payload(
    document_bytes: bytes,
    name: str = PROOF_ATTACHMENT_NAME,
) -> EmbeddedPayload:
    """
    Return the single embedded file registered under ``name``.

    Raises:
        PayloadNotFound:
            If no entry carries ``name``, more than one does, or the entry
            has no decodable embedded stream.
        MalformedDocument:
            If the container itself cannot be parsed.
    """
    with open_document(document_bytes) as pdf:
        root = _embedded_files_root(pdf)
        if root is None:
            raise PayloadNotFound("Document has no embedded file registry")

        matches = [
            filespec
            for raw_key, filespec in _iter_name_tree(root)
            if decode_name(raw_key) == name
        ]

        if not matches:
            raise PayloadNotFound(f"No embedded file named '{name}'")

        if len(matches) > 1:
            raise PayloadNotFound(
                f"Embedded file '{name}' is ambiguous ({len(matches)} entries)"
            )

        payload = _read_payload(name, matches[0])

    if payload is None:
        raise PayloadNotFound(f"Embedded file '{name}' has no readable stream")

    return payload
