# tests/test_emitter.py
"""Tests for dictionary rendering and the append-only writer."""

import os
import stat

import pytest

from irdict.config import AnalysisConfig
from irdict.emitter import FILE_MODE, DictionaryEmitter, render_entry
from irdict.errors import DictionaryIOError
from irdict.reconciler import DictionaryEntry
from tests.conftest import read_entries


class TestRenderEntry:

    @pytest.mark.parametrize("content, expected", [
        (b"needle\x00", '"needle"'),
        (b"GET", '"GET"'),
        (b"\x7fELF", '"\\x7fELF"'),
        (b"a b", '"a\\x20b"'),
        (b"a\x00b", '"a\\x00b"'),
        (b"\x00\x00", '"\\x00"'),
        (b"\xff\x80\n", '"\\xff\\x80\\x0a"'),
        (b'q"\\~!', '"q"\\~!"'),
    ])
    def test_rendering(self, content, expected):
        assert render_entry(content) == expected

    def test_only_printable_ascii_in_output(self):
        rendered = render_entry(bytes(range(256)))
        assert all(33 <= ord(ch) <= 126 for ch in rendered)


class TestDictionaryEmitter:

    def test_writes_one_line_per_entry(self, config, dict_path):
        with DictionaryEmitter(config) as emitter:
            assert emitter.emit(DictionaryEntry(b"GET", "strcmp", 3))
            assert emitter.emit(DictionaryEntry(b"POST\x00", "strcmp", 5))
        assert emitter.written == 2
        assert read_entries(dict_path) == ['"GET"', '"POST"']

    def test_rejects_out_of_bounds(self, config, dict_path):
        with DictionaryEmitter(config) as emitter:
            assert not emitter.emit(DictionaryEntry(b"ab"))
            assert not emitter.emit(DictionaryEntry(b"x" * 33))
        assert emitter.written == 0
        assert read_entries(dict_path) == []

    def test_appends_never_truncates(self, config, dict_path):
        with open(dict_path, "w", encoding="ascii") as fh:
            fh.write('"old"\n')
        with DictionaryEmitter(config) as emitter:
            emitter.emit(DictionaryEntry(b"new"))
        assert read_entries(dict_path) == ['"old"', '"new"']

    def test_open_failure(self, tmp_path):
        cfg = AnalysisConfig(dict_path=str(tmp_path / "missing" / "out.dict"))
        with pytest.raises(DictionaryIOError, match="Could not open/create"):
            DictionaryEmitter(cfg).open()

    def test_emit_requires_open(self, config):
        with pytest.raises(DictionaryIOError):
            DictionaryEmitter(config).emit(DictionaryEntry(b"abc"))

    def test_write_failure_closes_handle(self, config, monkeypatch):
        def boom(fd):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(os, "fsync", boom)
        emitter = DictionaryEmitter(config)
        with pytest.raises(DictionaryIOError, match="Could not write"):
            with emitter:
                emitter.emit(DictionaryEntry(b"abc"))
        assert not emitter.is_open
        assert emitter.written == 0

    def test_close_is_idempotent(self, config):
        emitter = DictionaryEmitter(config).open()
        emitter.close()
        emitter.close()
        assert not emitter.is_open

    def test_created_with_owner_writable_mode(self, config, dict_path):
        previous = os.umask(0)
        try:
            with DictionaryEmitter(config) as emitter:
                emitter.emit(DictionaryEntry(b"abc"))
        finally:
            os.umask(previous)
        assert stat.S_IMODE(os.stat(dict_path).st_mode) == FILE_MODE == 0o644

    def test_close_failure_is_dictionary_error(self, config):
        class FailingClose:
            def __init__(self, stream):
                self.stream = stream

            def close(self):
                self.stream.close()
                raise OSError(5, "Input/output error")

        emitter = DictionaryEmitter(config).open()
        emitter._stream = FailingClose(emitter._stream)
        with pytest.raises(DictionaryIOError, match="Could not close"):
            emitter.close()
        assert not emitter.is_open
