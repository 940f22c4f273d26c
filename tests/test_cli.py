"""
CLI tests for mcc: argument handling, output selection, diagnostics.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import mcc

DEMO = "START: LOAD A, B\nJMP START\n"


@pytest.fixture
def demo(tmp_path):
    path = tmp_path / "demo.mc"
    path.write_text(DEMO, encoding="utf-8")
    return path


# ─── Argument count ───────────────────────

class TestArguments:
    def test_no_file(self, capsys):
        assert mcc.main([]) == 0
        assert capsys.readouterr().out == "file name required\n"

    def test_too_many_files(self, capsys, tmp_path):
        assert mcc.main([str(tmp_path / "a.mc"), str(tmp_path / "b.mc")]) == 0
        assert capsys.readouterr().out == "only one file name can be provided\n"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            mcc.main(["--version"])
        assert exc.value.code == 0
        assert "mcc 0.1.0" in capsys.readouterr().out


# ─── Output ───────────────────────────────

class TestOutput:
    def test_hex_to_stdout(self, capsys, demo):
        assert mcc.main([str(demo), "--target", "basic32"]) == 0
        assert capsys.readouterr().out == "11000000\n00010000\n"

    def test_format_flag(self, capsys, demo):
        assert mcc.main([str(demo), "--target", "basic32", "--format", "bin"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2 and all(len(line) == 32 for line in lines)

    def test_format_from_extension(self, demo, tmp_path):
        out = tmp_path / "demo.lst"
        assert mcc.main([str(demo), "--target", "basic32", "-o", str(out)]) == 0
        assert out.read_text(encoding="ascii").startswith("; microcode listing v1")

    def test_raw_file(self, demo, tmp_path):
        out = tmp_path / "demo.raw"
        assert mcc.main([str(demo), "--target", "basic32", "-o", str(out)]) == 0
        assert out.read_bytes() == b"\x11\x00\x00\x00\x00\x01\x00\x00"

    def test_format_flag_beats_extension(self, demo, tmp_path):
        out = tmp_path / "demo.lst"
        mcc.main([str(demo), "--target", "basic32", "-o", str(out), "--format", "hex"])
        assert out.read_text(encoding="ascii") == "11000000\n00010000\n"

    def test_output_format_helper(self):
        assert mcc.output_format(None, None) == "hex"
        assert mcc.output_format(None, "x.BIN") == "bin"
        assert mcc.output_format(None, "x.txt") == "hex"
        assert mcc.output_format("raw", "x.lst") == "raw"

    def test_tokens(self, capsys, demo):
        assert mcc.main([str(demo), "--tokens"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "Token(IDENTIFIER, 'START', L1:1)"
        assert out[-1].startswith("Token(EOF")

    def test_symbols(self, capsys, demo):
        assert mcc.main([str(demo), "--target", "basic32", "--symbols"]) == 0
        out = capsys.readouterr().out
        assert "START" in out
        assert "0x0000" in out

    def test_json_target(self, capsys, tmp_path):
        target = tmp_path / "t.json"
        target.write_text('{"width": 8, "fields": {"X": [7, 0]}}', encoding="utf-8")
        src = tmp_path / "p.mc"
        src.write_text("X = 0xAB", encoding="utf-8")
        assert mcc.main([str(src), "--target", str(target)]) == 0
        assert capsys.readouterr().out == "AB\n"

    def test_log_file(self, demo, tmp_path):
        log = tmp_path / "mcc.log"
        assert mcc.main([str(demo), "--target", "basic32", "-o",
                         str(tmp_path / "o.hex"), "--log-file", str(log)]) == 0
        for handler in list(mcc.logging.getLogger("microcode_compiler").handlers):
            handler.flush()
        assert "Compiled" in log.read_text(encoding="utf-8")


# ─── Diagnostics ──────────────────────────

class TestDiagnostics:
    def test_compile_error(self, capsys, tmp_path):
        src = tmp_path / "bad.mc"
        src.write_text("LOAD A, B\nJMP NOWHERE\n", encoding="utf-8")
        out_file = tmp_path / "bad.hex"
        assert mcc.main([str(src), "--target", "basic32", "-o", str(out_file)]) == 1
        err = capsys.readouterr().err
        assert err.strip() == (f"{src}:2:5: UndefinedSymbolError: "
                               f"undefined symbol 'NOWHERE'")
        assert not out_file.exists()

    def test_lex_error(self, capsys, tmp_path):
        src = tmp_path / "hash.mc"
        src.write_text("NOP\n  # comment?\n", encoding="utf-8")
        assert mcc.main([str(src), "--target", "basic32"]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert ":2:3: LexError:" in captured.err

    def test_missing_source(self, capsys, tmp_path):
        assert mcc.main([str(tmp_path / "absent.mc")]) == 1
        assert "SourceNotFoundError" in capsys.readouterr().err

    def test_unknown_target(self, capsys, demo):
        assert mcc.main([str(demo), "--target", "no_such_profile"]) == 1
        assert "no_such_profile" in capsys.readouterr().err

    def test_internal_error(self, capsys, demo, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(mcc.Compiler, "compile_to", boom)
        assert mcc.main([str(demo), "--target", "basic32"]) == 2
        assert "internal compiler error: boom" in capsys.readouterr().err

    def test_unopenable_log_file(self, capsys, demo, tmp_path):
        log = tmp_path / "missing_dir" / "mcc.log"
        assert mcc.main([str(demo), "--target", "basic32", "--log-file", str(log)]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.strip().startswith(f"{log}: cannot open log file:")
        assert "Traceback" not in captured.err
