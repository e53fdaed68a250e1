"""
irdict/errors.py
════════════════

Error taxonomy for the dictionary extraction pass.

Fatal conditions are exceptions; per-site outcomes that merely cause a call
site to be skipped are :class:`SkipReason` values and never raised.

::

    Dict2FileError
    ├── ConfigError          missing/relative output path, bad length bounds
    ├── DictionaryIOError    the dictionary file cannot be opened or written
    └── IRSyntaxError        textual IR the reader does not understand
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Dict2FileError(Exception):
    """Base exception for all irdict errors."""
    pass


class ConfigError(Dict2FileError):
    """Raised before any scanning when the configuration is unusable."""
    pass


class DictionaryIOError(Dict2FileError):
    """Raised when the dictionary file cannot be opened, written or synced."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class IRSyntaxError(Dict2FileError):
    """Raised when a line of textual IR cannot be read."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        text: str = "",
        source: str = "",
    ) -> None:
        self.line = line
        self.text = text
        self.source = source
        where = source or "<string>"
        if line is not None:
            where = f"{where}:{line}"
        detail = f"{where}: {message}"
        if text:
            detail = f"{detail}\n  {text.strip()}"
        super().__init__(detail)


class SkipReason(Enum):
    """Why a recognised comparison site produced no dictionary entry."""
    RESOLUTION_AMBIGUITY = "resolution-ambiguity"   # both or neither operand known
    OUT_OF_BOUNDS = "out-of-bounds"                 # length outside [min_len, max_len]
