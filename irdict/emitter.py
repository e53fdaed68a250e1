"""
irdict/emitter.py
═════════════════

Writes dictionary entries, one quoted literal per line::

    "GET"
    "Content-Length:"
    "\\x7fELF"

Bytes 33..126 are written as-is, every other byte as ``\\xNN``.  A NUL that
is the very last byte is the implicit terminator and is not written at all.

The file is opened once for the whole run in append/create mode (0644 before
umask) and is never truncated, so repeated builds accumulate entries.  Every
entry is flushed and ``fsync``-ed on its own; a build that dies half-way
still leaves a usable dictionary behind.  Any I/O failure is fatal.
"""

from __future__ import annotations

import logging
import os
from types import TracebackType
from typing import BinaryIO, Optional, Type

from irdict.config import AnalysisConfig
from irdict.errors import DictionaryIOError
from irdict.reconciler import DictionaryEntry

logger = logging.getLogger(__name__)

_PRINTABLE_LOW = 33
_PRINTABLE_HIGH = 126

# rw-r--r-- before umask
FILE_MODE = 0o644


def render_entry(content: bytes) -> str:
    """The quoted dictionary literal for *content*."""
    last = len(content) - 1
    parts = []
    for i, byte in enumerate(content):
        if _PRINTABLE_LOW <= byte <= _PRINTABLE_HIGH:
            parts.append(chr(byte))
        elif byte == 0 and i == last:
            continue
        else:
            parts.append(f"\\x{byte:02x}")
    return '"' + "".join(parts) + '"'


class DictionaryEmitter:
    """
    Append-only writer for the dictionary file.

    Use as a context manager so the handle is released on every exit path:

    >>> with DictionaryEmitter(config) as emitter:
    ...     emitter.emit(entry)
    """

    def __init__(self, config: AnalysisConfig) -> None:
        self.config = config
        self.path = config.dict_path or ""
        self.written = 0
        self._stream: Optional[BinaryIO] = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> "DictionaryEmitter":
        if self._stream is not None:
            return self
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, FILE_MODE)
            self._stream = os.fdopen(fd, "ab")
        except OSError as exc:
            raise DictionaryIOError(
                f"Could not open/create {self.path}: {exc.strerror or exc}", self.path
            ) from exc
        logger.debug("opened dictionary file %s", self.path)
        return self

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except OSError as exc:
            raise DictionaryIOError(
                f"Could not close dictionary file '{self.path}': {exc.strerror or exc}",
                self.path,
            ) from exc

    def __enter__(self) -> "DictionaryEmitter":
        return self.open()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def accepts(self, entry: DictionaryEntry) -> bool:
        return self.config.min_len <= entry.length <= self.config.max_len

    def emit(self, entry: DictionaryEntry) -> bool:
        """Write *entry*; ``False`` if its length is out of bounds."""
        if not self.accepts(entry):
            return False
        if self._stream is None:
            raise DictionaryIOError(f"dictionary file {self.path} is not open", self.path)
        line = (render_entry(entry.content) + "\n").encode("ascii")
        try:
            self._stream.write(line)
            self._stream.flush()
            os.fsync(self._stream.fileno())
        except OSError as exc:
            raise DictionaryIOError(
                f"Could not write to dictionary file '{self.path}': {exc.strerror or exc}",
                self.path,
            ) from exc
        self.written += 1
        return True
