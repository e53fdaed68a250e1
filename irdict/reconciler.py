"""
irdict/reconciler.py
════════════════════

Combines a resolved operand with the comparison's length argument into the
byte range that is actually worth putting in the dictionary.

For bounded comparisons (``memcmp``, ``strncmp``, ``strncasecmp``) an explicit
length of exactly ``len + 1`` means the terminator takes part in the
comparison, so a NUL is appended.  Unbounded comparisons (``strcmp``,
``strcasecmp``) always compare up to and including a terminator: one is
appended unless already added, and anything after the first NUL is dropped.

The final entry is the longer of the resolved content and the compared
range; a compiler may have narrowed the comparison but the full token is the
more useful input.  It is clamped to ``max_len`` and rejected below
``min_len``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from irdict.classifier import CompareKind
from irdict.config import AnalysisConfig

TERMINATOR = b"\x00"


@dataclass(frozen=True)
class DictionaryEntry:
    """
    Attributes
    ----------
    content          : bytes to write; a final NUL is the implicit terminator
    function         : callee of the originating comparison
    compared_length  : how many bytes the call compared, after reconciliation
    """
    content: bytes
    function: str = ""
    compared_length: int = 0

    @property
    def length(self) -> int:
        return len(self.content)


def reconcile(
    data: bytes,
    kind: CompareKind,
    explicit_length: Optional[int],
    config: AnalysisConfig,
    function: str = "",
) -> Optional[DictionaryEntry]:
    """Return the dictionary entry for *data*, or ``None`` if too short.

    *explicit_length* is the constant length argument of a bounded
    comparison and must be ``None`` for unbounded kinds or when the length
    is not a compile-time constant.
    """
    content = bytes(data)
    literal_length = len(content)
    added_terminator = False

    if explicit_length is not None:
        effective = explicit_length
        if explicit_length == literal_length + 1:
            content += TERMINATOR
            added_terminator = True
    else:
        effective = literal_length

    if not kind.is_bounded:
        if not added_terminator:
            content += TERMINATOR
            effective += 1
        nul = content.find(TERMINATOR, 0, effective)
        if 0 <= nul and nul + 1 < effective:
            effective = nul + 1
            content = content[:effective]

    if len(content) > config.max_len:
        content = content[:config.max_len]
    if len(content) < config.min_len:
        return None
    return DictionaryEntry(content, function, effective)
