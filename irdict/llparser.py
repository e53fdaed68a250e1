"""
irdict/llparser.py — textual LLVM IR reader (syntax layer)
==========================================================

Reads ``.ll`` files into plain syntax records; :mod:`irdict.loader` then
lowers those records into an :class:`irdict.ir.Module`.

Only the lines the dictionary pass depends on are parsed in full, each with
its own start rule of one PEG grammar:

    global_line     @name = [linkage…] global|constant <type> [c"…"] …
    define_line     define [words…] <ret> @name(<params>) … {
    declare_line    declare [words…] <ret> @name(<params>) …
    call_line       [%r =] [tail] call [words…] <ty> <callee>(<args>) …

Every other instruction is kept as an opcode plus optional result name so
blocks keep their program order.  Comments, metadata, attribute groups,
``target``/``source_filename`` lines and type definitions are skipped.
Alias and ifunc lines are kept as a name plus the symbol they point at.

Depends on:
    - parsimonious (PEG parser)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Tuple, Union

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from irdict.errors import IRSyntaxError
from irdict.ir import (
    VOID,
    ArrayType,
    FunctionType,
    IntType,
    IRType,
    NamedType,
    OpaqueType,
    PointerType,
    StructType,
    VectorType,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

LL_GRAMMAR = Grammar(r"""
    # ─────────────────────────────────────────────────────────────
    # Line-level start rules
    # ─────────────────────────────────────────────────────────────

    global_line     = global_ident ws? "=" ws? global_words global_kind ws type initializer? rest
    global_words    = (global_word ws)*
    global_word     = !global_kind ~r"[a-z_][a-z0-9_]*(\([^)]*\))?"
    global_kind     = ~r"(global|constant)\b"
    initializer     = ws cstring

    define_line     = "define" header_words ws type ws global_ident ws? "(" ws? param_list? ws? ")" rest
    declare_line    = "declare" header_words ws type ws global_ident ws? "(" ws? param_list? ws? ")" rest
    header_words    = (ws header_word)*
    header_word     = cc_number / align_attr / (!type_keyword ~r"[a-z_][a-z0-9_]*(\([^)]*\))?")
    param_list      = param (ws? "," ws? param)*
    param           = varargs / named_param
    named_param     = type (ws param_attr)* (ws local_ident)?

    call_line       = call_result? tail_marker? "call" call_words ws type ws callee ws? "(" ws? arg_list? ws? ")" rest
    call_result     = local_ident ws? "=" ws?
    tail_marker     = ~r"(tail|musttail|notail)\b" ws
    call_words      = (ws call_word)*
    call_word       = cc_number / align_attr / (!type_keyword !value_keyword ~r"[a-z_][a-z0-9_]*(\([^)]*\))?")
    callee          = const_expr / global_ident / local_ident
    arg_list        = typed_value (ws? "," ws? typed_value)*

    # ─────────────────────────────────────────────────────────────
    # Operands
    # ─────────────────────────────────────────────────────────────

    typed_value     = type (ws param_attr)* ws value
    param_attr      = align_attr / word_attr
    align_attr      = "align" ws int_lit
    word_attr       = !value_keyword !type_keyword ~r"[a-z_][a-z0-9_]*(\([^)]*\))?"
    value           = const_expr / global_ident / local_ident / cstring / float_lit / int_lit / keyword_value
    const_expr      = gep_expr / cast_expr
    gep_expr        = "getelementptr" (ws gep_flag)* ws? "(" ws? type ws? "," ws? typed_value (ws? "," ws? typed_value)* ws? ")"
    gep_flag        = ~r"(inbounds|nuw|nusw|inrange\([^)]*\))"
    cast_expr       = cast_op ws? "(" ws? typed_value ws "to" ws type ws? ")"
    cast_op         = ~r"(bitcast|addrspacecast|ptrtoint|inttoptr)\b"

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    type            = base_type type_suffix*
    type_suffix     = pointer_star / fn_params
    pointer_star    = ws? "*"
    fn_params       = ws? "(" ws? type_list? ws? ")"
    type_list       = type_item (ws? "," ws? type_item)*
    type_item       = varargs / type
    base_type       = array_type / vector_type / struct_type / int_type / ptr_type / named_type / void_type / opaque_type
    array_type      = "[" ws? int_lit ws "x" ws type ws? "]"
    vector_type     = "<" ws? int_lit ws "x" ws type ws? ">"
    struct_type     = packed_struct / plain_struct
    packed_struct   = "<" plain_struct ">"
    plain_struct    = "{" ws? type_list? ws? "}"
    int_type        = ~r"i[0-9]+\b"
    ptr_type        = ~r"ptr\b" (ws "addrspace" ws? "(" ws? int_lit ws? ")")?
    named_type      = "%" ident_body
    void_type       = ~r"void\b"
    opaque_type     = ~r"(half|bfloat|float|double|x86_fp80|fp128|ppc_fp128|x86_mmx|x86_amx|label|metadata|token)\b"

    # ─────────────────────────────────────────────────────────────
    # Lexical pieces
    # ─────────────────────────────────────────────────────────────

    global_ident    = "@" ident_body
    local_ident     = "%" ident_body
    ident_body      = ~r'"[^"]*"' / ~r"[-a-zA-Z$._0-9]+"
    cstring         = ~r'c"[^"]*"'
    float_lit       = ~r"-?[0-9]+\.[0-9]+([eE][-+]?[0-9]+)?" / ~r"0x[KLMHR]?[0-9A-Fa-f]+"
    int_lit         = ~r"-?[0-9]+"
    keyword_value   = ~r"(null|true|false|undef|poison|zeroinitializer|none)\b"
    value_keyword   = ~r"(null|true|false|undef|poison|zeroinitializer|none|getelementptr|bitcast|addrspacecast|ptrtoint|inttoptr)\b"
    type_keyword    = ~r"(i[0-9]+|ptr|void|half|bfloat|float|double|x86_fp80|fp128|ppc_fp128|x86_mmx|x86_amx|label|metadata|token)\b"
    cc_number       = "cc" ws int_lit
    varargs         = "..."
    rest            = ~r".*"
    ws              = ~r"[ \t]+"
""")


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — SYNTAX RECORDS
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GlobalRef:
    name: str


@dataclass(frozen=True)
class LocalRef:
    name: str


@dataclass(frozen=True)
class IntLit:
    value: int


@dataclass(frozen=True)
class FloatLit:
    text: str


@dataclass(frozen=True)
class CStringLit:
    data: bytes


@dataclass(frozen=True)
class KeywordLit:
    text: str


@dataclass(frozen=True)
class TypedOperand:
    type: IRType
    value: Any
    attrs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GepExpr:
    source_type: IRType
    base: TypedOperand
    indices: Tuple[TypedOperand, ...] = ()


@dataclass(frozen=True)
class CastExpr:
    opcode: str
    operand: TypedOperand
    to_type: IRType


Operand = Union[GlobalRef, LocalRef, IntLit, FloatLit, CStringLit, KeywordLit, GepExpr, CastExpr]


@dataclass(frozen=True)
class Param:
    type: IRType
    name: Optional[str] = None


@dataclass(frozen=True)
class GlobalDecl:
    name: str
    value_type: IRType
    is_constant: bool
    words: Tuple[str, ...] = ()
    initializer: Optional[bytes] = None
    line: int = 0

    @property
    def is_external(self) -> bool:
        return "external" in self.words or "extern_weak" in self.words

    @property
    def addrspace(self) -> int:
        for word in self.words:
            m = re.fullmatch(r"addrspace\((\d+)\)", word)
            if m:
                return int(m.group(1))
        return 0


@dataclass(frozen=True)
class FunctionHeader:
    is_definition: bool
    name: str
    return_type: IRType
    params: Tuple[Param, ...] = ()
    var_arg: bool = False
    calling_conv: str = "ccc"
    words: Tuple[str, ...] = ()
    line: int = 0

    @property
    def function_type(self) -> FunctionType:
        return FunctionType(self.return_type, tuple(p.type for p in self.params), self.var_arg)


@dataclass(frozen=True)
class CallSyntax:
    """``type`` is the return type, or the full function type when written."""
    type: IRType
    callee: Operand
    args: Tuple[TypedOperand, ...] = ()
    result: Optional[str] = None
    tail: str = ""
    calling_conv: str = "ccc"
    words: Tuple[str, ...] = ()
    line: int = 0


@dataclass(frozen=True)
class OpaqueInstrSyntax:
    opcode: str
    result: Optional[str] = None
    line: int = 0


InstrSyntax = Union[CallSyntax, OpaqueInstrSyntax]


@dataclass
class BlockSyntax:
    label: str = ""
    instructions: List[InstrSyntax] = field(default_factory=list)


@dataclass
class FunctionSyntax:
    header: FunctionHeader
    blocks: List[BlockSyntax] = field(default_factory=list)


@dataclass(frozen=True)
class AliasDecl:
    """``@name = … alias|ifunc <type>, <target>``; *target* is the last symbol named."""
    name: str
    kind: str
    target: Optional[str] = None
    line: int = 0


@dataclass
class ModuleSyntax:
    source_filename: str = ""
    globals: List[GlobalDecl] = field(default_factory=list)
    functions: List[FunctionSyntax] = field(default_factory=list)
    aliases: List[AliasDecl] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — VISITOR (Parse Tree → syntax records)
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class _Word:
    text: str


@dataclass(frozen=True)
class _Attr:
    text: str


@dataclass(frozen=True)
class _Kind:
    text: str


@dataclass(frozen=True)
class _CastOp:
    text: str


@dataclass(frozen=True)
class _Tail:
    text: str


@dataclass(frozen=True)
class _Result:
    name: str


@dataclass(frozen=True)
class _Callee:
    operand: Operand


@dataclass(frozen=True)
class _FnParams:
    params: Tuple[IRType, ...]
    var_arg: bool


class _VarArgs:
    pass


class _Star:
    pass


_VARARGS = _VarArgs()
_STAR = _Star()

_ESCAPE_RE = re.compile(rb"\\([0-9A-Fa-f]{2}|\\)")


def decode_cstring(text: str) -> bytes:
    """Bytes of a ``c"..."`` literal; ``\\XX`` is a hex escape."""
    body = text[2:-1].encode("utf-8", "surrogateescape")

    def _unescape(m: "re.Match[bytes]") -> bytes:
        esc = m.group(1)
        return b"\\" if esc == b"\\" else bytes([int(esc, 16)])

    return _ESCAPE_RE.sub(_unescape, body)


def _ident_name(body: str) -> str:
    if len(body) >= 2 and body[0] == '"' and body[-1] == '"':
        return body[1:-1]
    return body


def calling_conv_of(words: Tuple[str, ...]) -> str:
    """The calling convention named among *words*, ``ccc`` if none."""
    for word in words:
        m = re.fullmatch(r"cc\s+(\d+)", word)
        if m:
            return "ccc" if m.group(1) == "0" else f"cc {m.group(1)}"
        if word.endswith("cc") or word.startswith(("spir_", "ptx_", "amdgpu_", "aarch64_")):
            return word
    return "ccc"


def _flatten(items: Any) -> List[Any]:
    out: List[Any] = []
    for item in items:
        if isinstance(item, list):
            out.extend(_flatten(item))
        elif item is None or isinstance(item, Node):
            continue
        else:
            out.append(item)
    return out


def _of(items: List[Any], kind: type) -> List[Any]:
    return [item for item in items if isinstance(item, kind)]


class LLSyntaxBuilder(NodeVisitor):
    """Transforms a Parsimonious parse tree into syntax records.

    Unnamed or uninteresting nodes collapse into flat lists of the records
    built beneath them, so every rule can pick its parts out by type.
    """

    unwrapped_exceptions = (IRSyntaxError,)

    def generic_visit(self, node, visited_children):
        return _flatten(visited_children)

    # ─────────────────────────────────────────────────────────────
    # Lines
    # ─────────────────────────────────────────────────────────────

    def visit_global_line(self, node, visited_children):
        items = _flatten(visited_children)
        name = _of(items, GlobalRef)[0].name
        kind = _of(items, _Kind)[0].text
        value_type = _of(items, IRType)[0]
        init = _of(items, CStringLit)
        return GlobalDecl(
            name=name,
            value_type=value_type,
            is_constant=(kind == "constant"),
            words=tuple(w.text for w in _of(items, _Word)),
            initializer=init[0].data if init else None,
        )

    def visit_define_line(self, node, visited_children):
        return self._header(True, visited_children)

    def visit_declare_line(self, node, visited_children):
        return self._header(False, visited_children)

    def _header(self, is_definition, visited_children):
        items = _flatten(visited_children)
        words = tuple(w.text for w in _of(items, _Word))
        return FunctionHeader(
            is_definition=is_definition,
            name=_of(items, GlobalRef)[0].name,
            return_type=_of(items, IRType)[0],
            params=tuple(_of(items, Param)),
            var_arg=any(item is _VARARGS for item in items),
            calling_conv=calling_conv_of(words),
            words=words,
        )

    def visit_named_param(self, node, visited_children):
        items = _flatten(visited_children)
        names = _of(items, LocalRef)
        return Param(_of(items, IRType)[0], names[0].name if names else None)

    def visit_call_line(self, node, visited_children):
        items = _flatten(visited_children)
        words = tuple(w.text for w in _of(items, _Word))
        results = _of(items, _Result)
        tails = _of(items, _Tail)
        return CallSyntax(
            type=_of(items, IRType)[0],
            callee=_of(items, _Callee)[0].operand,
            args=tuple(_of(items, TypedOperand)),
            result=results[0].name if results else None,
            tail=tails[0].text if tails else "",
            calling_conv=calling_conv_of(words),
            words=words,
        )

    def visit_call_result(self, node, visited_children):
        return _Result(_of(_flatten(visited_children), LocalRef)[0].name)

    def visit_tail_marker(self, node, visited_children):
        return _Tail(node.text.strip())

    def visit_callee(self, node, visited_children):
        return _Callee(_flatten(visited_children)[0])

    def visit_global_word(self, node, visited_children):
        return _Word(node.text)

    def visit_header_word(self, node, visited_children):
        return _Word(" ".join(node.text.split()))

    def visit_call_word(self, node, visited_children):
        return _Word(" ".join(node.text.split()))

    def visit_global_kind(self, node, visited_children):
        return _Kind(node.text)

    # ─────────────────────────────────────────────────────────────
    # Operands
    # ─────────────────────────────────────────────────────────────

    def visit_typed_value(self, node, visited_children):
        items = _flatten(visited_children)
        return TypedOperand(
            type=items[0],
            value=items[-1],
            attrs=tuple(a.text for a in _of(items, _Attr)),
        )

    def visit_param_attr(self, node, visited_children):
        return _Attr(" ".join(node.text.split()))

    def visit_gep_expr(self, node, visited_children):
        items = _flatten(visited_children)
        operands = _of(items, TypedOperand)
        return GepExpr(
            source_type=items[0],
            base=operands[0],
            indices=tuple(operands[1:]),
        )

    def visit_cast_expr(self, node, visited_children):
        items = _flatten(visited_children)
        return CastExpr(
            opcode=_of(items, _CastOp)[0].text,
            operand=_of(items, TypedOperand)[0],
            to_type=_of(items, IRType)[-1],
        )

    def visit_cast_op(self, node, visited_children):
        return _CastOp(node.text)

    def visit_global_ident(self, node, visited_children):
        return GlobalRef(_ident_name(node.text[1:]))

    def visit_local_ident(self, node, visited_children):
        return LocalRef(_ident_name(node.text[1:]))

    def visit_cstring(self, node, visited_children):
        return CStringLit(decode_cstring(node.text))

    def visit_float_lit(self, node, visited_children):
        return FloatLit(node.text)

    def visit_int_lit(self, node, visited_children):
        return IntLit(int(node.text))

    def visit_keyword_value(self, node, visited_children):
        return KeywordLit(node.text)

    # ─────────────────────────────────────────────────────────────
    # Types
    # ─────────────────────────────────────────────────────────────

    def visit_type(self, node, visited_children):
        items = _flatten(visited_children)
        ty = items[0]
        for suffix in items[1:]:
            if suffix is _STAR:
                ty = PointerType(ty)
            elif isinstance(suffix, _FnParams):
                ty = FunctionType(ty, suffix.params, suffix.var_arg)
        return ty

    def visit_pointer_star(self, node, visited_children):
        return _STAR

    def visit_fn_params(self, node, visited_children):
        items = _flatten(visited_children)
        return _FnParams(
            tuple(_of(items, IRType)),
            any(item is _VARARGS for item in items),
        )

    def visit_varargs(self, node, visited_children):
        return _VARARGS

    def visit_array_type(self, node, visited_children):
        count, element = _flatten(visited_children)
        return ArrayType(count.value, element)

    def visit_vector_type(self, node, visited_children):
        count, element = _flatten(visited_children)
        return VectorType(count.value, element)

    def visit_plain_struct(self, node, visited_children):
        return StructType(tuple(_of(_flatten(visited_children), IRType)))

    def visit_packed_struct(self, node, visited_children):
        inner = _of(_flatten(visited_children), StructType)[0]
        return StructType(inner.elements, packed=True)

    def visit_int_type(self, node, visited_children):
        return IntType(int(node.text[1:]))

    def visit_ptr_type(self, node, visited_children):
        space = _of(_flatten(visited_children), IntLit)
        return PointerType(None, space[0].value if space else 0)

    def visit_named_type(self, node, visited_children):
        return NamedType(_ident_name(node.text[1:]))

    def visit_void_type(self, node, visited_children):
        return VOID

    def visit_opaque_type(self, node, visited_children):
        return OpaqueType(node.text)


def _parse_rule(rule: str, text: str, line: Optional[int] = None, source: str = "") -> Any:
    try:
        tree = LL_GRAMMAR[rule].parse(text)
    except ParseError as exc:
        raise IRSyntaxError(f"cannot parse {rule.replace('_', ' ')}: {exc}",
                            line=line, text=text, source=source) from exc
    return LLSyntaxBuilder().visit(tree)


def parse_global(text: str, line: Optional[int] = None, source: str = "") -> GlobalDecl:
    decl = _parse_rule("global_line", text.strip(), line, source)
    return replace(decl, line=line or 0)


def parse_function_header(text: str, line: Optional[int] = None, source: str = "") -> FunctionHeader:
    text = text.strip()
    rule = "define_line" if text.startswith("define") else "declare_line"
    header = _parse_rule(rule, text, line, source)
    return replace(header, line=line or 0)


def parse_call(text: str, line: Optional[int] = None, source: str = "") -> CallSyntax:
    call = _parse_rule("call_line", text.strip(), line, source)
    return replace(call, line=line or 0)


# ═══════════════════════════════════════════════════════════════════
#  PART 4 — LINE SCANNER
# ═══════════════════════════════════════════════════════════════════

_NAME = r'(?:"[^"]*"|[-a-zA-Z$._0-9]+)'
_LABEL_RE = re.compile(rf"^({_NAME}):")
_CALL_RE = re.compile(rf"^(?:%{_NAME}\s*=\s*)?(?:(?:tail|musttail|notail)\s+)?call\b")
_RESULT_RE = re.compile(rf"^%({_NAME})\s*=\s*([a-z_]+)")
_OPCODE_RE = re.compile(r"^([a-z_]+)")
_ALIAS_RE = re.compile(
    rf"^@({_NAME})\s*=\s*(?:[a-z_]+(?:\([^)]*\))?\s+)*(alias|ifunc)\b(.*)$")
_SYMBOL_RE = re.compile(rf"@({_NAME})")
_SOURCE_RE = re.compile(r'^source_filename\s*=\s*"([^"]*)"')


def strip_comment(line: str) -> str:
    """Drop a ``;`` comment, ignoring semicolons inside quoted strings."""
    in_quote = False
    for i, ch in enumerate(line):
        if ch == '"':
            in_quote = not in_quote
        elif ch == ";" and not in_quote:
            return line[:i]
    return line


def parse_alias(text: str, line: Optional[int] = None) -> Optional[AliasDecl]:
    """An alias or ifunc line, or ``None`` for any other global line."""
    m = _ALIAS_RE.match(text.strip())
    if m is None:
        return None
    targets = _SYMBOL_RE.findall(m.group(3))
    return AliasDecl(
        _ident_name(m.group(1)),
        m.group(2),
        _ident_name(targets[-1]) if targets else None,
        line or 0,
    )


def _instruction(text: str, line: int, source: str) -> InstrSyntax:
    if _CALL_RE.match(text):
        try:
            return parse_call(text, line, source)
        except IRSyntaxError as exc:
            logger.debug("keeping unparsed call as opaque: %s", exc)
            m = _RESULT_RE.match(text)
            return OpaqueInstrSyntax("call", _ident_name(m.group(1)) if m else None, line)
    m = _RESULT_RE.match(text)
    if m:
        return OpaqueInstrSyntax(m.group(2), _ident_name(m.group(1)), line)
    m = _OPCODE_RE.match(text)
    return OpaqueInstrSyntax(m.group(1) if m else text.split()[0], None, line)


def scan_module(text: str, source: str = "") -> ModuleSyntax:
    """Split a ``.ll`` file into globals, declarations and function bodies."""
    module = ModuleSyntax()
    current: Optional[FunctionSyntax] = None
    depth = 0

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = strip_comment(raw).strip()
        if not line:
            continue

        if current is not None:
            if depth > 0:
                depth += line.count("[") - line.count("]")
                continue
            if line == "}":
                current = None
                continue
            m = _LABEL_RE.match(line)
            if m:
                current.blocks.append(BlockSyntax(_ident_name(m.group(1))))
                continue
            if not current.blocks:
                current.blocks.append(BlockSyntax())
            instr = _instruction(line, lineno, source)
            if isinstance(instr, OpaqueInstrSyntax):
                depth = max(0, line.count("[") - line.count("]"))
            current.blocks[-1].instructions.append(instr)
            continue

        if line.startswith("@"):
            alias = parse_alias(line, lineno)
            if alias is not None:
                module.aliases.append(alias)
                continue
            module.globals.append(parse_global(line, lineno, source))
        elif line.startswith("define"):
            header = parse_function_header(line, lineno, source)
            current = FunctionSyntax(header)
            module.functions.append(current)
            if line.endswith("}"):
                current = None
        elif line.startswith("declare"):
            module.functions.append(FunctionSyntax(parse_function_header(line, lineno, source)))
        else:
            m = _SOURCE_RE.match(line)
            if m:
                module.source_filename = m.group(1)

    if current is not None:
        raise IRSyntaxError(f"unterminated body of @{current.header.name}", source=source)
    return module
