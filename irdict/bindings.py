"""
irdict/bindings.py
══════════════════

The local-binding table: byte sequences copied into stack buffers.

``char buf[] = "token";`` compiles to a ``memcpy`` from a private constant
into an ``alloca``.  When that copy is seen, the copied bytes are remembered
under the destination's :data:`~irdict.ir.ValueId` so that a later
``strcmp(input, buf)`` can still be resolved.

The table lives for one analysis run and spans every function of the module.
Bindings are overwritten by later copies and never removed.
"""

from __future__ import annotations

from typing import Dict, Iterator, Optional, Tuple

from irdict.ir import Value, ValueId


class LocalBindingTable:
    """Mapping of destination value id to the bytes last copied into it."""

    def __init__(self) -> None:
        self._entries: Dict[ValueId, bytes] = {}

    def bind(self, destination: Value, data: bytes) -> None:
        """Record *data* for *destination*, superseding any earlier binding."""
        self._entries[destination.vid] = bytes(data)

    def lookup(self, ref: Value) -> Optional[bytes]:
        return self._entries.get(ref.vid)

    def __contains__(self, ref: object) -> bool:
        return isinstance(ref, Value) and ref.vid in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def items(self) -> Iterator[Tuple[ValueId, bytes]]:
        return iter(self._entries.items())
