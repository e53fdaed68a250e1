"""
irdict/resolver.py
══════════════════

Byte-sequence resolution for call operands.

Three strategies are tried in a fixed order and the first success wins:

  1. **literal**             host constant folding
                             (:func:`irdict.ir.constant_string_info`); an
                             empty result counts as unresolved
  2. **global initializer**  a static address into a global whose initializer
                             is a byte array; yields the whole initializer
  3. **local binding**       bytes previously copied into this very value
                             (:class:`irdict.bindings.LocalBindingTable`)

Resolution is purely structural.  Nothing here looks at control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from irdict.bindings import LocalBindingTable
from irdict.config import AnalysisConfig
from irdict.ir import (
    ConstantDataArray,
    ConstantExpr,
    GlobalVariable,
    Value,
    constant_string_info,
    strip_pointer_casts,
)

logger = logging.getLogger(__name__)


class ResolutionSource(Enum):
    LITERAL = "literal"
    GLOBAL_INITIALIZER = "global-initializer"
    LOCAL_BINDING = "local-binding"


@dataclass(frozen=True)
class ResolvedBytes:
    """Bytes an operand is statically known to hold, and how we know."""
    data: bytes
    source: ResolutionSource

    def __len__(self) -> int:
        return len(self.data)


def global_initializer_bytes(value: Value) -> Optional[bytes]:
    """The full byte-array initializer behind a static global address.

    *value* must be a ``getelementptr`` constant expression with constant
    indices, or the global itself (the zero-offset address).  The offset is
    not applied and a trailing NUL is kept.
    """
    value = strip_pointer_casts(value)
    if isinstance(value, ConstantExpr):
        if not value.is_static_gep():
            return None
        value = strip_pointer_casts(value.operands[0])
    if not isinstance(value, GlobalVariable):
        return None
    init = value.initializer
    if not isinstance(init, ConstantDataArray) or not init.is_string():
        return None
    return init.as_bytes()


class ByteSequenceResolver:
    """Resolves IR values to the byte sequences they statically denote."""

    def __init__(self, bindings: LocalBindingTable, config: AnalysisConfig) -> None:
        self.bindings = bindings
        self.config = config

    def resolve_literal(self, value: Value) -> Optional[ResolvedBytes]:
        data = constant_string_info(value)
        if not data:
            return None
        return ResolvedBytes(data, ResolutionSource.LITERAL)

    def resolve_global_initializer(self, value: Value) -> Optional[ResolvedBytes]:
        data = global_initializer_bytes(value)
        if data is None:
            return None
        return ResolvedBytes(data, ResolutionSource.GLOBAL_INITIALIZER)

    def resolve_binding(self, value: Value) -> Optional[ResolvedBytes]:
        data = self.bindings.lookup(value)
        if not data:
            return None
        return ResolvedBytes(data, ResolutionSource.LOCAL_BINDING)

    def resolve_static(self, value: Value) -> Optional[ResolvedBytes]:
        """Literal or global-initializer resolution only."""
        result = self.resolve_literal(value) or self.resolve_global_initializer(value)
        self._trace(value, result)
        return result

    def resolve(self, value: Value) -> Optional[ResolvedBytes]:
        """All three strategies, local binding last."""
        result = (
            self.resolve_literal(value)
            or self.resolve_global_initializer(value)
            or self.resolve_binding(value)
        )
        self._trace(value, result)
        return result

    def _trace(self, value: Value, result: Optional[ResolvedBytes]) -> None:
        if not self.config.debug:
            return
        if result is None:
            logger.debug("%s -> unresolved", value.reference())
        else:
            logger.debug("%s -> %r (%s)", value.reference(), result.data,
                         result.source.value)
