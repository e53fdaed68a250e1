"""
irdict/loader.py
════════════════

Lowers the syntax records of :mod:`irdict.llparser` into an
:class:`irdict.ir.Module`.

Globals, function prototypes and aliases are created first so bodies can
refer to any symbol regardless of where it is defined.  Local names are
resolved per function; a use that precedes its definition (a ``phi``
operand) gets a placeholder instruction that the definition later fills in.

Constant integers and constant expressions are uniqued per module, so two
spellings of ``getelementptr inbounds ([4 x i8], ptr @.str, i64 0, i64 0)``
in one file are the same :class:`~irdict.ir.Value`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from irdict.errors import IRSyntaxError
from irdict.ir import (
    PTR,
    ArrayType,
    CallInst,
    Constant,
    ConstantDataArray,
    ConstantExpr,
    ConstantInt,
    Function,
    FunctionType,
    GlobalAlias,
    GlobalVariable,
    Instruction,
    IntType,
    IRType,
    Module,
    OpaqueConstant,
    Value,
)
from irdict.llparser import (
    AliasDecl,
    CallSyntax,
    CastExpr,
    CStringLit,
    FloatLit,
    FunctionHeader,
    FunctionSyntax,
    GepExpr,
    GlobalDecl,
    GlobalRef,
    IntLit,
    KeywordLit,
    LocalRef,
    ModuleSyntax,
    OpaqueInstrSyntax,
    TypedOperand,
    scan_module,
)

logger = logging.getLogger(__name__)


class _LocalScope:
    """Local value names of one function body."""

    def __init__(self, function: Function) -> None:
        self.function = function
        self.values: Dict[str, Value] = {a.name: a for a in function.args if a.name}
        self.pending: Dict[str, Instruction] = {}

    def get(self, name: str, type: IRType) -> Value:
        value = self.values.get(name)
        if value is None:
            value = self.pending.get(name)
        if value is None:
            value = self.pending[name] = Instruction(None, type, name)
        return value

    def define(self, inst: Instruction) -> Instruction:
        if not inst.name:
            return inst
        placeholder = self.pending.pop(inst.name, None)
        if placeholder is not None and not isinstance(inst, CallInst):
            placeholder.opcode = inst.opcode
            inst = placeholder
        self.values[inst.name] = inst
        return inst


class ModuleLoader:
    """Builds one :class:`Module` from one :class:`ModuleSyntax`."""

    def __init__(self, syntax: ModuleSyntax, name: str = "") -> None:
        self.syntax = syntax
        self.name = name
        self.module = Module(name)
        self.module.source_filename = syntax.source_filename

    def load(self) -> Module:
        for decl in self.syntax.globals:
            self.module.add_global(self.make_global(decl))
        for fn_syntax in self.syntax.functions:
            self.module.add_function(self.make_function(fn_syntax.header))
        for alias in self.syntax.aliases:
            self.module.add_alias(GlobalAlias(alias.name, alias.kind))
        for alias in self.syntax.aliases:
            self.link_alias(alias)
        for fn_syntax in self.syntax.functions:
            if fn_syntax.header.is_definition:
                self.lower_body(fn_syntax)
        logger.debug("loaded %r", self.module)
        return self.module

    # ─────────────────────────────────────────────────────────────
    # Symbols
    # ─────────────────────────────────────────────────────────────

    def make_global(self, decl: GlobalDecl) -> GlobalVariable:
        initializer: Optional[Constant] = None
        if decl.initializer is not None:
            element = decl.value_type.element if isinstance(decl.value_type, ArrayType) else None
            if element is not None and element != IntType(8):
                initializer = ConstantDataArray(decl.initializer, element)
            else:
                initializer = ConstantDataArray(decl.initializer)
        elif not decl.is_external:
            initializer = OpaqueConstant(decl.value_type, "<initializer>")
        return GlobalVariable(
            decl.name,
            decl.value_type,
            initializer=initializer,
            is_constant=decl.is_constant,
            linkage=decl.words,
            addrspace=decl.addrspace,
        )

    def make_function(self, header: FunctionHeader) -> Function:
        return Function(
            header.name,
            header.function_type,
            calling_conv=header.calling_conv,
            linkage=header.words,
            arg_names=[p.name for p in header.params],
        )

    def link_alias(self, decl: AliasDecl) -> None:
        alias = self.module.get_alias(decl.name)
        target = self.module.lookup(decl.target) if decl.target else None
        if target is None:
            logger.debug("%s:%d: @%s points at no known symbol",
                         self.name or "<string>", decl.line, decl.name)
        alias.aliasee = target

    # ─────────────────────────────────────────────────────────────
    # Bodies
    # ─────────────────────────────────────────────────────────────

    def lower_body(self, fn_syntax: FunctionSyntax) -> None:
        function = self.module.get_function(fn_syntax.header.name)
        scope = _LocalScope(function)
        for block_syntax in fn_syntax.blocks:
            block = function.append_block(block_syntax.label)
            for instr in block_syntax.instructions:
                if isinstance(instr, CallSyntax):
                    inst: Instruction = self.lower_call(instr, scope)
                else:
                    inst = self.lower_opaque(instr)
                block.append(scope.define(inst))

    def lower_opaque(self, instr: OpaqueInstrSyntax) -> Instruction:
        return Instruction(instr.opcode, name=instr.result or "")

    def lower_call(self, call: CallSyntax, scope: _LocalScope) -> CallInst:
        args = [self.lower_operand(arg, scope, call.line) for arg in call.args]
        if isinstance(call.type, FunctionType):
            ftype = call.type
        else:
            ftype = FunctionType(call.type, tuple(arg.type for arg in call.args))
        callee = self.lower_operand(TypedOperand(PTR, call.callee), scope, call.line)
        return CallInst(
            callee,
            args,
            function_type=ftype,
            calling_conv=call.calling_conv,
            name=call.result or "",
            tail=call.tail,
        )

    def lower_operand(
        self,
        operand: TypedOperand,
        scope: Optional[_LocalScope],
        line: int = 0,
    ) -> Value:
        value, ty = operand.value, operand.type
        module = self.module

        if isinstance(value, GlobalRef):
            symbol = module.lookup(value.name)
            if symbol is None:
                raise IRSyntaxError(f"use of undefined value '@{value.name}'",
                                    line=line or None, source=self.name)
            return symbol

        if isinstance(value, LocalRef):
            if scope is None:
                raise IRSyntaxError(f"local value '%{value.name}' used in a constant",
                                    line=line or None, source=self.name)
            return scope.get(value.name, ty)

        if isinstance(value, IntLit):
            if isinstance(ty, IntType):
                return module.unique_constant(
                    ("int", ty, value.value), lambda: ConstantInt(ty, value.value))
            return module.unique_constant(
                ("opaque", ty, str(value.value)), lambda: OpaqueConstant(ty, str(value.value)))

        if isinstance(value, KeywordLit):
            if value.text in ("true", "false") and isinstance(ty, IntType):
                bit = 1 if value.text == "true" else 0
                return module.unique_constant(("int", ty, bit), lambda: ConstantInt(ty, bit))
            return module.unique_constant(
                ("opaque", ty, value.text), lambda: OpaqueConstant(ty, value.text))

        if isinstance(value, FloatLit):
            return module.unique_constant(
                ("opaque", ty, value.text), lambda: OpaqueConstant(ty, value.text))

        if isinstance(value, CStringLit):
            return module.unique_constant(
                ("cstring", value.data), lambda: ConstantDataArray(value.data))

        if isinstance(value, GepExpr):
            base = self.lower_operand(value.base, scope, line)
            indices = [self.lower_operand(idx, scope, line) for idx in value.indices]
            key = ("getelementptr", ty, value.source_type, base.vid,
                   tuple(idx.vid for idx in indices))
            return module.unique_constant(
                key, lambda: ConstantExpr("getelementptr", ty, [base] + indices,
                                          source_type=value.source_type))

        if isinstance(value, CastExpr):
            inner = self.lower_operand(value.operand, scope, line)
            key = (value.opcode, value.to_type, inner.vid)
            return module.unique_constant(
                key, lambda: ConstantExpr(value.opcode, value.to_type, [inner]))

        raise IRSyntaxError(f"unsupported operand {value!r}", line=line or None,
                            source=self.name)


def load_module(text: str, name: str = "<string>") -> Module:
    """Read textual LLVM IR into a :class:`Module`."""
    syntax = scan_module(text, name)
    return ModuleLoader(syntax, name).load()


def load_module_file(path: Union[str, Path]) -> Module:
    """Read a ``.ll`` file; raises ``OSError`` if it cannot be read."""
    path = Path(path)
    text = path.read_text(encoding="utf-8", errors="surrogateescape")
    return load_module(text, str(path))
