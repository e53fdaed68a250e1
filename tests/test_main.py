# tests/test_main.py
"""Tests for the irdict command-line front end."""

import logging

import pytest

from irdict import __version__
from irdict.config import ENV_DICT_PATH, ENV_MIN_LEN
from irdict.main import EXIT_ERROR, EXIT_INFRA, EXIT_OK, main
from tests.conftest import SAMPLE_LL, TYPED_POINTER_LL, read_entries


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (ENV_DICT_PATH, ENV_MIN_LEN, "AFL_DEBUG", "AFL_QUIET", "IRDICT_MAX_LEN"):
        monkeypatch.delenv(name, raising=False)
    yield
    logger = logging.getLogger("irdict")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "sample.ll"
    path.write_text(SAMPLE_LL, encoding="utf-8")
    return str(path)


class TestCLI:

    def test_output_option(self, sample, dict_path):
        assert main(["-o", dict_path, sample]) == EXIT_OK
        assert read_entries(dict_path) == ['"needle"', '"\\x7fELF"', '"hello"']

    def test_environment_path(self, sample, dict_path, monkeypatch):
        monkeypatch.setenv(ENV_DICT_PATH, dict_path)
        assert main([sample]) == EXIT_OK
        assert len(read_entries(dict_path)) == 3

    def test_several_modules(self, sample, tmp_path, dict_path):
        other = tmp_path / "typed.ll"
        other.write_text(TYPED_POINTER_LL, encoding="utf-8")
        assert main(["-o", dict_path, sample, str(other)]) == EXIT_OK
        assert read_entries(dict_path)[-1] == '"PASS"'

    def test_length_bounds(self, sample, dict_path):
        assert main(["-o", dict_path, "--min-len", "6", "--max-len", "6", sample]) == EXIT_OK
        assert read_entries(dict_path) == ['"needle"', '"hello"']

    def test_no_entries_is_success(self, tmp_path, dict_path):
        empty = tmp_path / "empty.ll"
        empty.write_text("define void @f() {\n  ret void\n}\n", encoding="utf-8")
        assert main(["-o", dict_path, str(empty)]) == EXIT_OK
        assert read_entries(dict_path) == []

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_debug_and_quiet_exclusive(self, sample, dict_path):
        with pytest.raises(SystemExit) as info:
            main(["-o", dict_path, "-d", "-q", sample])
        assert info.value.code == 2


class TestExitCodes:

    def test_missing_path(self, sample):
        assert main([sample]) == EXIT_ERROR

    def test_relative_path(self, sample, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert main(["-o", "out.dict", sample]) == EXIT_ERROR
        assert not (tmp_path / "out.dict").exists()

    def test_bad_bounds(self, sample, dict_path):
        assert main(["-o", dict_path, "--min-len", "9", "--max-len", "4", sample]) == EXIT_ERROR

    def test_bad_environment_integer(self, sample, dict_path, monkeypatch):
        monkeypatch.setenv(ENV_MIN_LEN, "lots")
        assert main(["-o", dict_path, sample]) == EXIT_ERROR

    def test_missing_module(self, tmp_path, dict_path):
        assert main(["-o", dict_path, str(tmp_path / "absent.ll")]) == EXIT_INFRA

    def test_syntax_error(self, tmp_path, dict_path):
        bad = tmp_path / "bad.ll"
        bad.write_text("define i32 @broken(\n", encoding="utf-8")
        assert main(["-o", dict_path, str(bad)]) == EXIT_INFRA

    def test_unwritable_dictionary(self, sample, tmp_path):
        target = tmp_path / "no-such-dir" / "out.dict"
        assert main(["-o", str(target), sample]) == EXIT_INFRA


class TestLogging:

    def test_debug_level(self, sample, dict_path):
        main(["-o", dict_path, "-d", sample])
        assert logging.getLogger("irdict").level == logging.DEBUG

    def test_quiet_level(self, sample, dict_path):
        main(["-o", dict_path, "-q", sample])
        assert logging.getLogger("irdict").level == logging.WARNING

    def test_verbose_raises_level(self, sample, dict_path):
        main(["-o", dict_path, "-q", "-v", sample])
        assert logging.getLogger("irdict").level == logging.INFO

    def test_errors_are_logged(self, sample, caplog):
        with caplog.at_level(logging.ERROR, logger="irdict"):
            main([sample])
        assert ENV_DICT_PATH in caplog.text
