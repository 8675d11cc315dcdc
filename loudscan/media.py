"""
loudscan Media Handles - Resolve candidate sources to binary streams.

Responsibilities:
- Turn bytes, paths, open streams and stream factories into a binary stream
- Close what was opened here, leave caller-owned streams open

Forbidden:
- No decoding or inspection of media content
"""

import io
import os
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from loudscan.contracts import MediaCandidate, MediaSource


@contextmanager
def open_media(source: MediaSource) -> Iterator[BinaryIO]:
    """
    Open a candidate source as a binary stream.

    Args:
        source: Raw bytes, a filesystem path, an open binary stream, or a
            zero-argument callable returning a binary stream

    Yields:
        A readable binary stream.

    Raises:
        OSError: If a path cannot be opened or the factory fails to open
        TypeError: If the source type is not supported
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        yield io.BytesIO(bytes(source))
    elif isinstance(source, (str, os.PathLike)):
        with open(source, "rb") as stream:
            yield stream
    elif hasattr(source, "read"):
        # Caller-owned stream
        yield source
    elif callable(source):
        stream = source()
        try:
            yield stream
        finally:
            stream.close()
    else:
        raise TypeError(f"Unsupported media source: {type(source).__name__}")


def candidate_from_path(path: str | os.PathLike) -> MediaCandidate:
    """Build a candidate that reads the file at path when scanned."""
    return MediaCandidate(name=os.path.basename(os.fspath(path)), source=path)


def candidate_from_bytes(name: str, data: bytes) -> MediaCandidate:
    """Build a candidate from in-memory media bytes."""
    return MediaCandidate(name=name, source=data)
