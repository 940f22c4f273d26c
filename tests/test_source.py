"""
SourceReader tests: cursor, position tracking, buffering and failures.
"""

import io

import pytest
from microcode_compiler import source
from microcode_compiler.errors import SourceNotFoundError, SourceReadError
from microcode_compiler.source import EOF_CHAR, SourceReader


def _drain(reader: SourceReader) -> str:
    chars = []
    while not reader.at_end:
        chars.append(reader.advance())
    return "".join(chars)


# ─── Cursor ───────────────────────────────

class TestCursor:
    def test_reads_every_character(self):
        with SourceReader.from_string("ALU = 1\nSEQ = 2") as r:
            assert _drain(r) == "ALU = 1\nSEQ = 2"

    def test_peek_does_not_consume(self):
        with SourceReader.from_string("ab") as r:
            assert r.peek() == "a"
            assert r.peek(1) == "b"
            assert r.advance() == "a"
            assert r.peek() == "b"

    def test_past_end_returns_eof_char(self):
        with SourceReader.from_string("x") as r:
            r.advance()
            assert r.at_end
            assert r.peek() == EOF_CHAR
            assert r.advance() == EOF_CHAR

    def test_startswith(self):
        with SourceReader.from_string("<<3") as r:
            assert r.startswith("<<")
            assert not r.startswith(">>")
            assert not r.startswith("<<3x")

    def test_empty_source(self):
        with SourceReader.from_string("") as r:
            assert r.at_end
            assert (r.line, r.col) == (1, 1)


# ─── Position tracking ────────────────────

class TestPosition:
    def test_columns_advance(self):
        with SourceReader.from_string("abc") as r:
            r.advance()
            r.advance()
            assert (r.line, r.col) == (1, 3)

    def test_newline(self):
        with SourceReader.from_string("a\nb") as r:
            r.advance()
            r.advance()
            assert (r.line, r.col) == (2, 1)

    def test_crlf_counts_once(self):
        with SourceReader.from_string("a\r\nb") as r:
            _drain(r)
            assert r.line == 2

    def test_bare_cr_is_a_line_break(self):
        with SourceReader.from_string("a\rb\rc") as r:
            _drain(r)
            assert (r.line, r.col) == (3, 2)


# ─── Buffering ────────────────────────────

class TestBuffering:
    def test_small_chunks(self, monkeypatch):
        monkeypatch.setattr(source, "CHUNK_SIZE", 2)
        text = "field ALU[31:28]\n" * 20
        with SourceReader.from_string(text) as r:
            assert r.startswith("field")
            assert _drain(r) == text
            assert r.line == 21

    def test_lookahead_across_chunks(self, monkeypatch):
        monkeypatch.setattr(source, "CHUNK_SIZE", 1)
        with SourceReader.from_string("abcdef") as r:
            assert r.peek(4) == "e"
            assert r.startswith("abcd")


# ─── Files and handles ────────────────────

class TestFiles:
    def test_reads_path(self, tmp_path):
        path = tmp_path / "prog.mc"
        path.write_text("NOP\n", encoding="utf-8")
        with SourceReader(path) as r:
            assert r.name == str(path)
            assert _drain(r) == "NOP\n"

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError) as exc:
            SourceReader(tmp_path / "missing.mc").open()
        assert "missing.mc" in str(exc.value)

    def test_directory(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            SourceReader(tmp_path).open()

    def test_file_closed_after_block(self, tmp_path):
        path = tmp_path / "prog.mc"
        path.write_text("x", encoding="utf-8")
        with SourceReader(path) as r:
            handle = r._handle
        assert handle.closed

    def test_caller_stream_left_open(self):
        buf = io.StringIO("x")
        with SourceReader(buf) as r:
            _drain(r)
        assert not buf.closed

    def test_invalid_utf8_is_read_error(self, tmp_path):
        path = tmp_path / "bad.mc"
        path.write_bytes(b"ALU = 1\n\xff\xfe")
        with pytest.raises(SourceReadError):
            with SourceReader(path) as r:
                _drain(r)

    def test_io_failure_mid_read(self):
        class FailingStream:
            name = "flaky"

            def __init__(self):
                self.calls = 0

            def read(self, size):
                self.calls += 1
                if self.calls > 1:
                    raise OSError("device went away")
                return "ab"

        with pytest.raises(SourceReadError) as exc:
            with SourceReader(FailingStream()) as r:
                _drain(r)
        assert "device went away" in str(exc.value)
        assert exc.value.line == 1
        assert exc.value.col == 3
