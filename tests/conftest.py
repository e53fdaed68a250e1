# tests/conftest.py
"""
Shared fixtures and IR builders for the irdict test-suite.

The builders assemble small :class:`irdict.ir.Module` objects by hand, the
same shapes clang emits for C string handling, so engine tests do not
depend on the textual reader.  ``SAMPLE_LL`` and friends exercise the reader.
"""

from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from irdict.config import AnalysisConfig
from irdict.ir import (
    I1,
    I32,
    I64,
    PTR,
    VOID,
    BasicBlock,
    CallInst,
    ConstantDataArray,
    ConstantExpr,
    ConstantInt,
    Function,
    FunctionType,
    GlobalVariable,
    Instruction,
    IRType,
    Module,
    Value,
)

STRCMP_TYPE = FunctionType(I32, (PTR, PTR))
BOUNDED_TYPE = FunctionType(I32, (PTR, PTR, I64))
MEMCPY_TYPE = FunctionType(VOID, (PTR, PTR, I64, I1))
MEMCPY = "llvm.memcpy.p0.p0.i64"

PROTOTYPES = {
    "strcmp": STRCMP_TYPE,
    "strcasecmp": STRCMP_TYPE,
    "strncmp": BOUNDED_TYPE,
    "strncasecmp": BOUNDED_TYPE,
    "memcmp": BOUNDED_TYPE,
    MEMCPY: MEMCPY_TYPE,
}


# ---------------------------------------------------------------------------
#  IR builders
# ---------------------------------------------------------------------------

def declare(module: Module, name: str, ftype: Optional[FunctionType] = None,
            calling_conv: str = "ccc") -> Function:
    """Declare *name* with its libc prototype unless *ftype* is given."""
    fn = module.get_function(name)
    if fn is None:
        fn = module.add_function(Function(name, ftype or PROTOTYPES[name], calling_conv))
    return fn


def string_global(module: Module, name: str, data: bytes,
                  constant: bool = True) -> GlobalVariable:
    """A private ``[N x i8]`` global initialised with *data* verbatim."""
    init = ConstantDataArray(data)
    return module.add_global(GlobalVariable(name, init.type, init, is_constant=constant))


def c_string(module: Module, name: str, text: bytes) -> GlobalVariable:
    """A NUL-terminated string literal, as clang emits ``"text"``."""
    return string_global(module, name, text + b"\x00")


def gep(var: GlobalVariable, offset: int = 0) -> ConstantExpr:
    """``getelementptr inbounds ([N x i8], ptr @var, i64 0, i64 offset)``."""
    return ConstantExpr(
        "getelementptr",
        PTR,
        [var, i64(0), i64(offset)],
        source_type=var.value_type,
    )


def i64(value: int) -> ConstantInt:
    return ConstantInt(I64, value)


def define(module: Module, name: str, params: Sequence[IRType] = (PTR,)) -> BasicBlock:
    """Define ``i32 name(params...)`` and return its entry block."""
    fn = module.add_function(Function(name, FunctionType(I32, tuple(params)),
                                      arg_names=[f"a{i}" for i in range(len(params))]))
    return fn.append_block("entry")


def arg(block: BasicBlock, index: int = 0) -> Value:
    return block.parent.args[index]


def alloca(block: BasicBlock, name: str) -> Instruction:
    return block.append(Instruction("alloca", PTR, name, ()))


def call(block: BasicBlock, callee: Function, *args: Value,
         function_type: Optional[FunctionType] = None,
         calling_conv: str = "ccc") -> CallInst:
    inst = CallInst(callee, list(args), function_type=function_type,
                    calling_conv=calling_conv)
    return block.append(inst)


def compare(module: Module, block: BasicBlock, name: str, *args: Value) -> CallInst:
    return call(block, declare(module, name), *args)


def memcpy(module: Module, block: BasicBlock, dst: Value, src: Value, length: int) -> CallInst:
    fn = declare(module, MEMCPY)
    return call(block, fn, dst, src, i64(length), ConstantInt(I1, 0))


def read_entries(path) -> List[str]:
    """Lines of the dictionary file, without newlines."""
    p = Path(path)
    if not p.exists():
        return []
    return p.read_text(encoding="ascii").splitlines()


# ---------------------------------------------------------------------------
#  Textual IR samples
# ---------------------------------------------------------------------------

SAMPLE_LL = r"""; ModuleID = 'sample.c'
source_filename = "sample.c"
target datalayout = "e-m:e-p270:32:32-p271:32:32-p272:64:64-i64:64-f80:128-n8:16:32:64-S128"
target triple = "x86_64-pc-linux-gnu"

@.str = private unnamed_addr constant [7 x i8] c"needle\00", align 1
@__const.check.magic = private unnamed_addr constant [4 x i8] c"\7FELF", align 1
@.str.2 = private unnamed_addr constant [6 x i8] c"hello\00", align 1
@counter = dso_local global i32 0, align 4

; Function Attrs: noinline nounwind optnone uwtable
define dso_local i32 @check(ptr noundef %input) #0 {
entry:
  %input.addr = alloca ptr, align 8
  %buf = alloca [6 x i8], align 1
  store ptr %input, ptr %input.addr, align 8
  %0 = load ptr, ptr %input.addr, align 8
  %call = call i32 @strcmp(ptr noundef %0, ptr noundef @.str) #3
  %tobool = icmp ne i32 %call, 0
  br i1 %tobool, label %if.end, label %if.then

if.then:                                          ; preds = %entry
  ret i32 1

if.end:                                           ; preds = %entry
  %1 = load ptr, ptr %input.addr, align 8
  %call1 = call i32 @memcmp(ptr noundef %1, ptr noundef @__const.check.magic, i64 noundef 4) #3
  call void @llvm.memcpy.p0.p0.i64(ptr align 1 %buf, ptr align 1 @.str.2, i64 6, i1 false)
  %2 = load ptr, ptr %input.addr, align 8
  %call2 = call i32 @strncmp(ptr noundef %2, ptr noundef %buf, i64 noundef 6) #3
  ret i32 %call2
}

declare i32 @strcmp(ptr noundef, ptr noundef) #1

declare i32 @memcmp(ptr noundef, ptr noundef, i64 noundef) #1

declare i32 @strncmp(ptr noundef, ptr noundef, i64 noundef) #1

; Function Attrs: nocallback nofree nounwind willreturn memory(argmem: readwrite)
declare void @llvm.memcpy.p0.p0.i64(ptr noalias nocapture writeonly, ptr noalias nocapture readonly, i64, i1 immarg) #2

attributes #0 = { noinline nounwind optnone uwtable "frame-pointer"="all" }
attributes #1 = { "frame-pointer"="all" }

!llvm.module.flags = !{!0}
!0 = !{i32 1, !"wchar_size", i32 4}
"""

TYPED_POINTER_LL = r"""
@.str = private unnamed_addr constant [5 x i8] c"PASS\00", align 1

define i32 @auth(i8* %p) {
entry:
  %call = call i32 @strcmp(i8* %p, i8* getelementptr inbounds ([5 x i8], [5 x i8]* @.str, i64 0, i64 0))
  ret i32 %call
}

declare i32 @strcmp(i8*, i8*)
"""


# ---------------------------------------------------------------------------
#  Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def dict_path(tmp_path) -> str:
    return str(tmp_path / "out.dict")


@pytest.fixture
def config(dict_path) -> AnalysisConfig:
    return AnalysisConfig(dict_path=dict_path)


@pytest.fixture
def module() -> Module:
    return Module("test")


@pytest.fixture
def block(module) -> BasicBlock:
    return define(module, "target")
