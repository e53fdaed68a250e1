# tests/test_classifier.py
"""Tests for call-site recognition."""

import pytest

from irdict.classifier import (
    COMPARISON_FUNCTIONS,
    CallSiteClassifier,
    CompareKind,
    ComparisonCandidate,
    CopyCandidate,
    is_comparison_prototype,
    is_copy_prototype,
)
from irdict.ir import (
    I32,
    I64,
    I8,
    PTR,
    VOID,
    CallInst,
    ConstantInt,
    FunctionType,
    Instruction,
    IntType,
    PointerType,
)
from tests.conftest import (
    BOUNDED_TYPE,
    MEMCPY_TYPE,
    STRCMP_TYPE,
    alloca,
    arg,
    c_string,
    call,
    compare,
    declare,
    i64,
    memcpy,
)


@pytest.fixture
def classifier():
    return CallSiteClassifier()


class TestVocabulary:

    @pytest.mark.parametrize("name, kind", [
        ("strcmp", CompareKind.EXACT),
        ("strcasecmp", CompareKind.CASE_EXACT),
        ("strncmp", CompareKind.BOUNDED),
        ("strncasecmp", CompareKind.CASE_BOUNDED),
        ("memcmp", CompareKind.BOUNDED),
    ])
    def test_comparison_kinds(self, module, block, classifier, name, kind):
        var = c_string(module, ".str", b"key")
        args = [arg(block), var] + ([i64(3)] if kind.is_bounded else [])
        candidate = classifier.classify(compare(module, block, name, *args))
        assert isinstance(candidate, ComparisonCandidate)
        assert candidate.kind is kind
        assert candidate.function == name
        assert candidate.lhs is arg(block)
        assert candidate.rhs is var
        if kind.is_bounded:
            assert candidate.explicit_length == 3
        else:
            assert candidate.length is None

    def test_copy(self, module, block, classifier):
        buf = alloca(block, "buf")
        var = c_string(module, ".str", b"ID01")
        candidate = classifier.classify(memcpy(module, block, buf, var, 5))
        assert isinstance(candidate, CopyCandidate)
        assert candidate.destination is buf
        assert candidate.source is var
        assert candidate.explicit_length == 5

    def test_typed_pointer_copy_intrinsic(self, module, block, classifier):
        i8p = PointerType(I8)
        ftype = FunctionType(VOID, (i8p, i8p, I64, IntType(1)))
        fn = declare(module, "llvm.memcpy.p0i8.p0i8.i64", ftype)
        buf = alloca(block, "buf")
        site = call(block, fn, buf, c_string(module, ".s", b"abc"), i64(4), ConstantInt(IntType(1), 0))
        assert isinstance(classifier.classify(site), CopyCandidate)

    def test_names_are_case_sensitive(self, module, block, classifier):
        fn = declare(module, "StrCmp", STRCMP_TYPE)
        assert classifier.classify(call(block, fn, arg(block), arg(block))) is None

    def test_unrelated_function(self, module, block, classifier):
        fn = declare(module, "puts", FunctionType(I32, (PTR,)))
        assert classifier.classify(call(block, fn, arg(block))) is None

    def test_memcmp_lengths_are_zero_extended(self, module, block, classifier):
        site = compare(module, block, "memcmp", arg(block), arg(block), ConstantInt(I64, -1))
        assert classifier.classify(site).explicit_length == 2 ** 64 - 1

    def test_dynamic_length(self, module, block, classifier):
        n = Instruction("load", I64, "n")
        site = compare(module, block, "strncmp", arg(block), arg(block), n)
        assert classifier.classify(site).explicit_length is None


class TestPrototypeChecks:

    @pytest.mark.parametrize("ftype", [
        FunctionType(I32, (PTR, PTR), var_arg=True),
        FunctionType(VOID, (PTR, PTR)),
        FunctionType(I32, (PTR,)),
        FunctionType(I32, (PTR, PointerType(I32))),
        FunctionType(I32, (PointerType(I32), PointerType(I32))),
        FunctionType(I32, (PTR, I64)),
    ])
    def test_rejects_bad_strcmp(self, ftype):
        assert not is_comparison_prototype("strcmp", ftype)

    def test_memcmp_accepts_any_pointer(self):
        wide = PointerType(I32)
        assert is_comparison_prototype("memcmp", FunctionType(I32, (wide, wide, I64)))

    def test_bounded_needs_integer_length(self):
        assert is_comparison_prototype("strncmp", BOUNDED_TYPE)
        assert not is_comparison_prototype("strncmp", FunctionType(I32, (PTR, PTR, PTR)))

    def test_all_names_have_prototypes(self):
        for name, kind in COMPARISON_FUNCTIONS.items():
            ftype = BOUNDED_TYPE if kind.is_bounded else STRCMP_TYPE
            assert is_comparison_prototype(name, ftype), name

    @pytest.mark.parametrize("ftype, ok", [
        (MEMCPY_TYPE, True),
        (FunctionType(VOID, (PTR, PTR, I64)), True),
        (FunctionType(I32, (PTR, PTR, I64, IntType(1))), False),
        (FunctionType(VOID, (PTR, PTR, I64, I32)), False),
        (FunctionType(VOID, (PTR, I64, I64)), False),
        (FunctionType(VOID, (PTR, PTR)), False),
    ])
    def test_copy_prototype(self, ftype, ok):
        assert is_copy_prototype(ftype) is ok


class TestRejectedSites:

    def test_user_function_with_libc_name(self, module, block, classifier):
        fn = declare(module, "strcmp", FunctionType(I32, (PTR, PTR, PTR)))
        site = call(block, fn, arg(block), arg(block), arg(block))
        assert classifier.classify(site) is None

    def test_non_c_calling_convention(self, module, block, classifier):
        fn = declare(module, "strcmp")
        site = call(block, fn, arg(block), arg(block), calling_conv="fastcc")
        assert classifier.classify(site) is None

    def test_indirect_call(self, block, classifier):
        fp = Instruction("load", PTR, "fp")
        site = block.append(CallInst(fp, [arg(block), arg(block)],
                                     function_type=STRCMP_TYPE))
        assert classifier.classify(site) is None

    def test_call_type_differs_from_callee(self, module, block, classifier):
        fn = declare(module, "strcmp")
        site = call(block, fn, arg(block), arg(block), function_type=BOUNDED_TYPE)
        assert classifier.classify(site) is None

    def test_copy_with_other_intrinsic_name(self, module, block, classifier):
        fn = declare(module, "llvm.memmove.p0.p0.i64", MEMCPY_TYPE)
        buf = alloca(block, "buf")
        site = call(block, fn, buf, arg(block), i64(4), ConstantInt(IntType(1), 0))
        assert classifier.classify(site) is None
