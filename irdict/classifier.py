"""
irdict/classifier.py
════════════════════

Recognition of comparison and copy call sites.

A call is a candidate only when both its callee name and the callee's
declared prototype match.  A user function that merely happens to be called
``strcmp`` but takes different arguments is left alone.

    name                          kind                       prototype
    ───────────────────────────   ────────────────────────   ──────────────────────
    strcmp                        exact-compare              int (char*, char*)
    strcasecmp                    case-insensitive exact     int (char*, char*)
    strncmp                       bounded-compare            int (char*, char*, intN)
    strncasecmp                   case-insensitive bounded   int (char*, char*, intN)
    memcmp                        bounded-compare            int (T*, T*, intN)
    llvm.memcpy.p0i8.p0i8.i64     copy                       void (T*, U*, intN [, i1])
    llvm.memcpy.p0.p0.i64         copy                       void (ptr, ptr, intN [, i1])

Indirect calls, calls through constant expressions and calls using a
calling convention other than the C one never produce a candidate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from irdict.ir import (
    DEFAULT_CALLING_CONV,
    I1,
    CallInst,
    ConstantInt,
    FunctionType,
    IntType,
    PointerType,
    Value,
    VoidType,
    is_byte_pointer,
)


class CompareKind(Enum):
    EXACT = "exact-compare"
    BOUNDED = "bounded-compare"
    CASE_EXACT = "case-insensitive exact-compare"
    CASE_BOUNDED = "case-insensitive bounded-compare"

    @property
    def is_bounded(self) -> bool:
        return self in (CompareKind.BOUNDED, CompareKind.CASE_BOUNDED)


COMPARISON_FUNCTIONS: Dict[str, CompareKind] = {
    "strcmp": CompareKind.EXACT,
    "memcmp": CompareKind.BOUNDED,
    "strncmp": CompareKind.BOUNDED,
    "strcasecmp": CompareKind.CASE_EXACT,
    "strncasecmp": CompareKind.CASE_BOUNDED,
}

# Typed- and opaque-pointer manglings of the fixed-size byte copy intrinsic.
COPY_FUNCTIONS: FrozenSet[str] = frozenset({
    "llvm.memcpy.p0i8.p0i8.i64",
    "llvm.memcpy.p0.p0.i64",
})

# memcmp compares raw memory, the str* family compares C strings.
_STRING_FUNCTIONS = frozenset({"strcmp", "strncmp", "strcasecmp", "strncasecmp"})


@dataclass(frozen=True)
class ComparisonCandidate:
    kind: CompareKind
    function: str
    lhs: Value
    rhs: Value
    length: Optional[Value] = None
    call: Optional[CallInst] = None

    @property
    def explicit_length(self) -> Optional[int]:
        """The length operand when it is a constant integer, zero-extended."""
        if isinstance(self.length, ConstantInt):
            return self.length.zext_value
        return None


@dataclass(frozen=True)
class CopyCandidate:
    function: str
    destination: Value
    source: Value
    length: Value
    call: Optional[CallInst] = None

    @property
    def explicit_length(self) -> Optional[int]:
        if isinstance(self.length, ConstantInt):
            return self.length.zext_value
        return None


Candidate = Union[ComparisonCandidate, CopyCandidate]


def is_comparison_prototype(name: str, ftype: FunctionType) -> bool:
    kind = COMPARISON_FUNCTIONS[name]
    arity = 3 if kind.is_bounded else 2
    params = ftype.params
    if ftype.var_arg or len(params) != arity:
        return False
    if not isinstance(ftype.return_type, IntType):
        return False
    if not isinstance(params[0], PointerType) or params[0] != params[1]:
        return False
    if name in _STRING_FUNCTIONS and not is_byte_pointer(params[0]):
        return False
    return arity == 2 or isinstance(params[2], IntType)


def is_copy_prototype(ftype: FunctionType) -> bool:
    params = ftype.params
    if ftype.var_arg or len(params) not in (3, 4):
        return False
    if not isinstance(ftype.return_type, VoidType):
        return False
    if not (isinstance(params[0], PointerType) and isinstance(params[1], PointerType)):
        return False
    if not isinstance(params[2], IntType):
        return False
    return len(params) == 3 or params[3] == I1


class CallSiteClassifier:
    """Turns call instructions into comparison or copy candidates."""

    def classify(self, call: CallInst) -> Optional[Candidate]:
        callee = call.called_function
        if callee is None or call.calling_conv != DEFAULT_CALLING_CONV:
            return None
        name = callee.name
        ftype = callee.function_type

        if name in COMPARISON_FUNCTIONS:
            if not is_comparison_prototype(name, ftype):
                return None
            kind = COMPARISON_FUNCTIONS[name]
            if len(call.args) < len(ftype.params):
                return None
            return ComparisonCandidate(
                kind=kind,
                function=name,
                lhs=call.arg(0),
                rhs=call.arg(1),
                length=call.arg(2) if kind.is_bounded else None,
                call=call,
            )

        if name in COPY_FUNCTIONS:
            if not is_copy_prototype(ftype) or len(call.args) < 3:
                return None
            return CopyCandidate(
                function=name,
                destination=call.arg(0),
                source=call.arg(1),
                length=call.arg(2),
                call=call,
            )

        return None
