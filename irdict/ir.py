"""
irdict/ir.py
════════════

In-memory model of the compiled program the pass walks.

The model covers the parts of LLVM IR the dictionary pass looks at: types,
global variables with their initializers, functions with basic blocks, call
instructions, integer constants, constant byte arrays and constant
expressions.  Everything else is kept as an opaque instruction so program
order is preserved.

Identity
────────
Every :class:`Value` gets a :data:`ValueId` at construction.  Analyses key
their side tables by ``value.vid``; the module remains the only owner of its
nodes and nothing outside the reader mutates them.

Constant folding
────────────────
:func:`constant_string_info` is the host primitive that folds a pointer
operand to the C string it statically points at, in the manner of LLVM's
``getConstantStringInfo``.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    NewType,
    Optional,
    Sequence,
    Tuple,
)

ValueId = NewType("ValueId", int)

_value_ids = itertools.count(1)

DEFAULT_CALLING_CONV = "ccc"


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — TYPES
# ═════════════════════════════════════════════════════════════════════════

class IRType:
    """Base class of all IR types.  Types compare structurally."""
    pass


@dataclass(frozen=True)
class VoidType(IRType):
    def __str__(self) -> str:
        return "void"


@dataclass(frozen=True)
class IntType(IRType):
    bits: int

    def __str__(self) -> str:
        return f"i{self.bits}"


@dataclass(frozen=True)
class PointerType(IRType):
    """``ptr`` when *pointee* is ``None``, ``T*`` in typed-pointer IR."""
    pointee: Optional[IRType] = None
    addrspace: int = 0

    def __str__(self) -> str:
        if self.pointee is None:
            return "ptr" if not self.addrspace else f"ptr addrspace({self.addrspace})"
        return f"{self.pointee}*"


@dataclass(frozen=True)
class ArrayType(IRType):
    count: int
    element: IRType

    def __str__(self) -> str:
        return f"[{self.count} x {self.element}]"


@dataclass(frozen=True)
class VectorType(IRType):
    count: int
    element: IRType

    def __str__(self) -> str:
        return f"<{self.count} x {self.element}>"


@dataclass(frozen=True)
class StructType(IRType):
    elements: Tuple[IRType, ...] = ()
    packed: bool = False

    def __str__(self) -> str:
        body = "{ " + ", ".join(str(e) for e in self.elements) + " }"
        return f"<{body}>" if self.packed else body


@dataclass(frozen=True)
class NamedType(IRType):
    """Reference to a named (identified) struct type such as ``%struct.foo``."""
    name: str

    def __str__(self) -> str:
        return f"%{self.name}"


@dataclass(frozen=True)
class OpaqueType(IRType):
    """Floating point, label, metadata and token types."""
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FunctionType(IRType):
    return_type: IRType
    params: Tuple[IRType, ...] = ()
    var_arg: bool = False

    def __str__(self) -> str:
        params = [str(p) for p in self.params]
        if self.var_arg:
            params.append("...")
        return f"{self.return_type} ({', '.join(params)})"


VOID = VoidType()
I1 = IntType(1)
I8 = IntType(8)
I32 = IntType(32)
I64 = IntType(64)
PTR = PointerType()


def is_byte_pointer(ty: IRType) -> bool:
    """``ptr`` or ``i8*``: the pointer type C strings are passed as."""
    return isinstance(ty, PointerType) and (ty.pointee is None or ty.pointee == I8)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — VALUES
# ═════════════════════════════════════════════════════════════════════════

class Value:
    """Anything that can appear as an instruction operand."""

    def __init__(self, type: IRType, name: str = "") -> None:
        self.vid: ValueId = ValueId(next(_value_ids))
        self.type = type
        self.name = name

    def reference(self) -> str:
        """Short textual form used in trace output."""
        return f"%{self.name}" if self.name else f"%<{self.vid}>"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.reference()} #{self.vid}>"


class Argument(Value):
    """A formal parameter of a function."""

    def __init__(self, type: IRType, name: str = "", index: int = 0) -> None:
        super().__init__(type, name)
        self.index = index


class Constant(Value):
    pass


class ConstantInt(Constant):

    def __init__(self, type: IntType, value: int) -> None:
        super().__init__(type)
        self.value = value

    @property
    def zext_value(self) -> int:
        """The value reinterpreted as an unsigned integer of its width."""
        return self.value & ((1 << self.type.bits) - 1)

    def reference(self) -> str:
        return f"{self.type} {self.value}"


class ConstantDataArray(Constant):
    """A constant array of bytes, the IR form of a string literal."""

    def __init__(self, data: bytes, element: IRType = I8) -> None:
        super().__init__(ArrayType(len(data), element))
        self.data = bytes(data)

    def is_string(self) -> bool:
        return self.type.element == I8

    def as_bytes(self) -> bytes:
        return self.data

    def reference(self) -> str:
        return f"c{self.data!r}"


class OpaqueConstant(Constant):
    """``null``, ``undef``, ``zeroinitializer``, aggregates and the like."""

    def __init__(self, type: IRType, text: str) -> None:
        super().__init__(type)
        self.text = text

    def reference(self) -> str:
        return self.text


class ConstantExpr(Constant):
    """A constant expression: ``getelementptr`` or a cast."""

    POINTER_CASTS = frozenset({"bitcast", "addrspacecast"})

    def __init__(
        self,
        opcode: str,
        type: IRType,
        operands: Sequence[Value],
        source_type: Optional[IRType] = None,
    ) -> None:
        super().__init__(type)
        self.opcode = opcode
        self.operands: Tuple[Value, ...] = tuple(operands)
        self.source_type = source_type

    @property
    def is_gep(self) -> bool:
        return self.opcode == "getelementptr"

    @property
    def is_pointer_cast(self) -> bool:
        return self.opcode in self.POINTER_CASTS

    def is_static_gep(self) -> bool:
        """A ``getelementptr`` whose indices are all constant integers."""
        return self.is_gep and all(
            isinstance(idx, ConstantInt) for idx in self.operands[1:]
        )

    def reference(self) -> str:
        inner = ", ".join(op.reference() for op in self.operands)
        return f"{self.opcode} ({inner})"


class GlobalValue(Constant):
    """A module-level symbol.  Its value is its address."""

    def __init__(self, type: IRType, name: str, linkage: Sequence[str] = ()) -> None:
        super().__init__(type, name)
        self.linkage: Tuple[str, ...] = tuple(linkage)

    def reference(self) -> str:
        return f"@{self.name}"


class GlobalVariable(GlobalValue):

    def __init__(
        self,
        name: str,
        value_type: IRType,
        initializer: Optional[Constant] = None,
        is_constant: bool = False,
        linkage: Sequence[str] = (),
        addrspace: int = 0,
    ) -> None:
        super().__init__(PointerType(None, addrspace), name, linkage)
        self.value_type = value_type
        self.initializer = initializer
        self.is_constant = is_constant

    @property
    def has_initializer(self) -> bool:
        return self.initializer is not None


class GlobalAlias(GlobalValue):
    """An ``alias`` or ``ifunc`` symbol.  *aliasee* is filled in once known."""

    def __init__(
        self,
        name: str,
        kind: str = "alias",
        aliasee: Optional[GlobalValue] = None,
        linkage: Sequence[str] = (),
    ) -> None:
        super().__init__(PTR, name, linkage)
        self.kind = kind
        self.aliasee = aliasee


class Function(GlobalValue):

    def __init__(
        self,
        name: str,
        function_type: FunctionType,
        calling_conv: str = DEFAULT_CALLING_CONV,
        linkage: Sequence[str] = (),
        arg_names: Sequence[Optional[str]] = (),
    ) -> None:
        super().__init__(PTR, name, linkage)
        self.function_type = function_type
        self.calling_conv = calling_conv
        names = list(arg_names) + [None] * (len(function_type.params) - len(arg_names))
        self.args: List[Argument] = [
            Argument(ty, names[i] or "", i)
            for i, ty in enumerate(function_type.params)
        ]
        self.blocks: List[BasicBlock] = []

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    def append_block(self, name: str = "") -> "BasicBlock":
        block = BasicBlock(name, self)
        self.blocks.append(block)
        return block

    def instructions(self) -> Iterator["Instruction"]:
        for block in self.blocks:
            yield from block.instructions

    def calls(self) -> Iterator["CallInst"]:
        for inst in self.instructions():
            if isinstance(inst, CallInst):
                yield inst


class BasicBlock:

    def __init__(self, name: str = "", parent: Optional[Function] = None) -> None:
        self.name = name
        self.parent = parent
        self.instructions: List[Instruction] = []

    def append(self, inst: "Instruction") -> "Instruction":
        inst.parent = self
        self.instructions.append(inst)
        return inst

    def __repr__(self) -> str:
        return f"<BasicBlock {self.name or '?'}: {len(self.instructions)} insts>"


class Instruction(Value):
    """An instruction the reader does not model beyond its opcode."""

    def __init__(
        self,
        opcode: Optional[str],
        type: IRType = VOID,
        name: str = "",
        operands: Sequence[Value] = (),
    ) -> None:
        super().__init__(type, name)
        self.opcode = opcode
        self.operands: Tuple[Value, ...] = tuple(operands)
        self.parent: Optional[BasicBlock] = None


class CallInst(Instruction):
    """
    A direct or indirect call.

    *function_type* is the type the call site was written against; a callee
    declared with a different type is not considered the called function.
    """

    def __init__(
        self,
        callee: Value,
        args: Sequence[Value],
        function_type: Optional[FunctionType] = None,
        calling_conv: str = DEFAULT_CALLING_CONV,
        name: str = "",
        tail: str = "",
    ) -> None:
        if function_type is None:
            if isinstance(callee, Function):
                function_type = callee.function_type
            else:
                function_type = FunctionType(VOID, tuple(a.type for a in args))
        super().__init__("call", function_type.return_type, name, tuple(args) + (callee,))
        self.callee = callee
        self.args: Tuple[Value, ...] = tuple(args)
        self.function_type = function_type
        self.calling_conv = calling_conv
        self.tail = tail

    @property
    def called_function(self) -> Optional[Function]:
        if not isinstance(self.callee, Function):
            return None
        if self.callee.function_type != self.function_type:
            return None
        return self.callee

    def arg(self, index: int) -> Value:
        return self.args[index]


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — MODULE
# ═════════════════════════════════════════════════════════════════════════

class Module:
    """A translation unit: globals and functions in definition order."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.source_filename = ""
        self._globals: Dict[str, GlobalVariable] = {}
        self._functions: Dict[str, Function] = {}
        self._aliases: Dict[str, GlobalAlias] = {}
        self._constants: Dict[Hashable, Constant] = {}

    @property
    def globals(self) -> List[GlobalVariable]:
        return list(self._globals.values())

    @property
    def functions(self) -> List[Function]:
        return list(self._functions.values())

    def add_global(self, var: GlobalVariable) -> GlobalVariable:
        self._globals[var.name] = var
        return var

    def add_function(self, fn: Function) -> Function:
        self._functions[fn.name] = fn
        return fn

    def add_alias(self, alias: GlobalAlias) -> GlobalAlias:
        self._aliases[alias.name] = alias
        return alias

    def get_global(self, name: str) -> Optional[GlobalVariable]:
        return self._globals.get(name)

    def get_function(self, name: str) -> Optional[Function]:
        return self._functions.get(name)

    def get_alias(self, name: str) -> Optional[GlobalAlias]:
        return self._aliases.get(name)

    def lookup(self, name: str) -> Optional[GlobalValue]:
        """Global variable, function or alias named *name*."""
        return (self._globals.get(name) or self._functions.get(name)
                or self._aliases.get(name))

    def unique_constant(self, key: Hashable, factory: Callable[[], Constant]) -> Constant:
        """Return the one constant for *key*, creating it on first use."""
        const = self._constants.get(key)
        if const is None:
            const = self._constants[key] = factory()
        return const

    def __repr__(self) -> str:
        return (f"<Module {self.name!r}: {len(self._globals)} globals, "
                f"{len(self._functions)} functions>")


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — CONSTANT FOLDING
# ═════════════════════════════════════════════════════════════════════════

def strip_pointer_casts(value: Value) -> Value:
    while isinstance(value, ConstantExpr) and value.is_pointer_cast:
        value = value.operands[0]
    return value


def gep_byte_offset(expr: ConstantExpr) -> Optional[int]:
    """Byte offset of a static ``getelementptr`` into a byte array.

    Understands ``[N x i8]`` sources indexed as ``[0, k]`` and ``i8`` sources
    indexed as ``[k]``; anything else yields ``None``.
    """
    if not expr.is_static_gep():
        return None
    indices = [idx.value for idx in expr.operands[1:]]
    source = expr.source_type
    if isinstance(source, ArrayType) and source.element == I8:
        if len(indices) != 2 or indices[0] != 0:
            return None
        offset = indices[1]
    elif source == I8:
        if len(indices) != 1:
            return None
        offset = indices[0]
    else:
        return None
    return offset if offset >= 0 else None


def constant_string_info(value: Value) -> Optional[bytes]:
    """Fold *value* to the NUL-trimmed C string it points at, if static.

    Accepts a constant byte array itself, or the address of (or a static
    ``getelementptr`` into) a ``constant`` global whose initializer is a byte
    array.  The result stops before the first NUL and may be empty.
    """
    value = strip_pointer_casts(value)
    offset = 0
    if isinstance(value, ConstantDataArray):
        data = value.data if value.is_string() else None
    else:
        if isinstance(value, ConstantExpr) and value.is_gep:
            offset = gep_byte_offset(value)
            if offset is None:
                return None
            value = strip_pointer_casts(value.operands[0])
        if not isinstance(value, GlobalVariable) or not value.is_constant:
            return None
        init = value.initializer
        if not isinstance(init, ConstantDataArray) or not init.is_string():
            return None
        data = init.data
    if data is None or offset > len(data):
        return None
    data = data[offset:]
    nul = data.find(b"\x00")
    return data if nul < 0 else data[:nul]
