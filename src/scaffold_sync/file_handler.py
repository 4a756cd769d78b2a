"""File handler module: size-bounded reads, encoding-aware text I/O, atomic writes.

Every file the sync engine reads or writes goes through these helpers so
that the size ceiling, encoding detection and write atomicity are applied
the same way everywhere.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from scaffold_sync.errors import DEFAULT_MAX_CONFIG_SIZE, ConfigTooLargeError

# =============================================================================
# Reading
# =============================================================================


def read_bounded_bytes(
    path: Path, max_size: int = DEFAULT_MAX_CONFIG_SIZE
) -> bytes:
    """Read *path* after checking its size against *max_size*.

    Raises:
        ConfigTooLargeError: If the file is larger than *max_size* bytes.
        OSError: If the file cannot be stat'ed or read.
    """
    size = path.stat().st_size
    if size > max_size:
        raise ConfigTooLargeError(str(path), size, max_size)
    return path.read_bytes()


def decode_text(raw: bytes) -> tuple[str, str]:
    """Decode *raw* with automatic encoding detection.

    Uses charset-normalizer to detect the encoding.  Defaults to UTF-8 for
    empty input, for input that is already valid UTF-8, and when detection
    fails.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    if not raw:
        return ("", "utf-8")
    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    encoding = result.encoding
    # ascii is a strict subset of utf-8
    if encoding == "ascii":
        encoding = "utf-8"
    return (str(result), encoding)


def read_text_file(
    path: Path, max_size: int = DEFAULT_MAX_CONFIG_SIZE
) -> tuple[str, str]:
    """Read a text file with size check and encoding detection.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    return decode_text(read_bounded_bytes(path, max_size))


# =============================================================================
# Writing
# =============================================================================


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* atomically.

    Writes to a temporary file in the same directory then calls
    ``os.replace()`` so readers never see partial content.  Parent
    directories are created as needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_text_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Atomically write *content* to *path* with *encoding*.

    Returns:
        Number of bytes written.
    """
    encoded = content.encode(encoding)
    atomic_write_bytes(path, encoded)
    return len(encoded)
