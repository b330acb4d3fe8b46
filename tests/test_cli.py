import io
import json
import os

import pytest

from aheui import run_cli, run_repl
from extensions import AheuiExtensionError, load_runtime_services


TRACE_EXT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "ext", "trace.py")


def test_literal_source(capsys):
    assert run_cli(["-source", "받밤다망하"]) == 0
    assert capsys.readouterr().out == "7"


def test_source_file(tmp_path, capsys):
    program = tmp_path / "add.aheui"
    program.write_text("받밤다우\r\n하애애망\r\n", encoding="utf-8")
    assert run_cli([str(program)]) == 0
    assert capsys.readouterr().out == "7"


def test_program_reads_stdin(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("20 22\n"))
    assert run_cli(["-source", "방방다망하"]) == 0
    assert capsys.readouterr().out == "42"


def test_missing_file(tmp_path, capsys):
    assert run_cli([str(tmp_path / "nope.aheui")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_runtime_error_reports_traceback(capsys):
    assert run_cli(["-source", "받바나하"]) == 1
    err = capsys.readouterr().err
    assert "Traceback (most recent step last):" in err
    assert "Division by zero (rewrite: DIV)" in err


def test_traceback_json(capsys):
    assert run_cli(["-source", "받바나하", "--traceback-json"]) == 1
    err = capsys.readouterr().err
    payload = err[err.index("{"):]
    data = json.loads(payload)
    assert data["error"]["type"] == "AheuiRuntimeError"
    assert data["error"]["failing_step_index"] == 3


def test_max_steps(capsys):
    assert run_cli(["-source", "아", "--max-steps", "25"]) == 1
    assert "STEP_LIMIT" in capsys.readouterr().err


def test_source_flag_requires_program(capsys):
    assert run_cli(["-source"]) == 1
    assert "-source requires a program string" in capsys.readouterr().err


def test_trace_extension(capsys):
    assert run_cli(["-source", "받밤다망하", "--ext", TRACE_EXT]) == 0
    captured = capsys.readouterr()
    assert captured.out == "7"
    lines = captured.err.splitlines()
    assert lines[0] == "step 1 (0, 0) v=(1, 0) bank=0 PUSH"
    assert lines[2] == "step 3 (2, 0) v=(1, 0) bank=0 ADD"
    assert lines[-1] == "halted after 5 steps"


def test_trace_marks_bounces(capsys):
    assert run_cli(["-source", "자아하", "--ext", TRACE_EXT]) == 0
    assert capsys.readouterr().err.splitlines()[0] == "step 1 (0, 0) v=(-1, 0) bank=0 CMP!"


def test_missing_extension(tmp_path, capsys):
    assert run_cli(["-source", "하", "--ext", str(tmp_path / "none.py")]) == 1
    assert "Extension not found" in capsys.readouterr().err


def test_extension_without_register_hook(tmp_path):
    ext = tmp_path / "bad.py"
    ext.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(AheuiExtensionError):
        load_runtime_services([str(ext)])


def test_extension_metadata(tmp_path):
    ext = tmp_path / "meta.py"
    ext.write_text(
        "AHEUI_EXTENSION_NAME = 'meta'\n"
        "def aheui_register(ext):\n"
        "    ext.metadata(name='meta', version='2.0.0')\n"
        "    @ext.on_event('program_end')\n"
        "    def _done(interpreter):\n"
        "        interpreter.done = True\n",
        encoding="utf-8",
    )
    services = load_runtime_services([str(ext)])
    assert [m.name for m in services.metadata] == ["meta"]
    assert services.metadata[0].version == "2.0.0"


def test_unknown_event_is_rejected(tmp_path):
    ext = tmp_path / "typo.py"
    ext.write_text(
        "def aheui_register(ext):\n"
        "    ext.on_event('after_statement', lambda *a: None)\n",
        encoding="utf-8",
    )
    with pytest.raises(AheuiExtensionError):
        load_runtime_services([str(ext)])


def feed_lines(monkeypatch, lines):
    pending = list(lines)

    def fake_input(prompt=""):
        if not pending:
            raise EOFError
        return pending.pop(0)

    monkeypatch.setattr("builtins.input", fake_input)


def test_repl_keeps_rows_of_spaces(monkeypatch, capsys):
    # The middle row is part of the grid, not the signal to run it.
    feed_lines(monkeypatch, ["밤망우", "   ", "  하", ""])
    assert run_repl(verbose=False, max_steps=100) == 0
    captured = capsys.readouterr()
    assert "\n4\n" in captured.out
    assert captured.err == ""


def test_repl_honours_max_steps(monkeypatch, capsys):
    feed_lines(monkeypatch, ["아", ""])
    assert run_cli(["--max-steps", "10"]) == 0
    assert "STEP_LIMIT" in capsys.readouterr().err
