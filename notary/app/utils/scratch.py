"""
Per-invocation scratch storage.

Every pipeline invocation that needs transient files gets its own freshly
created, uniquely named directory. Two concurrent invocations can never
share a scratch namespace.

The directory is removed on every exit path. Removal failures are logged
and never replace the result or exception of the invocation itself.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


@contextmanager
def scratch_directory(
    *,
    root: Optional[Path] = None,
    prefix: str = "notary-",
) -> Iterator[Path]:
    """
    Yield a new private directory and remove it afterwards.

    Args:
        root:
            Parent directory. Defaults to the system temporary directory.
        prefix:
            Name prefix for the generated directory.
    """
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))

    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.warning("Failed to remove scratch directory '%s': %s", path, exc)
