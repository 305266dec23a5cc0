import io
import json

import pytest

from cupl import run_cli

ADD_AND_WRITE = [
    {"op": "LET", "left": {"id": "X"}, "right": {"op": "PLUS", "left": 2, "right": 3}},
    {"op": "WRITE", "left": {"id": "X"}},
    {"op": "STOP"},
]

DETERMINANT = [
    {"op": "ALLOCATE", "left": {"id": "M"}, "right": {"op": "INDEX", "left": 2, "right": 2}},
    {"op": "LET", "left": {"id": "D"}, "right": {"op": "DET", "left": {"id": "M"}}},
    {"op": "WRITE", "left": {"id": "D"}},
    {"op": "STOP"},
]


@pytest.fixture
def program_file(tmp_path):
    def write(document, name="program.json"):
        path = tmp_path / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return str(path)

    return write


def test_runs_a_program_file(program_file, capsys):
    assert run_cli([program_file(ADD_AND_WRITE)]) == 0
    captured = capsys.readouterr()
    assert captured.out.strip() == "X = 5.000000000"
    assert "cupl: warning: no DATA block" in captured.err


def test_reads_standard_input(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(ADD_AND_WRITE)))
    assert run_cli([]) == 0
    assert capsys.readouterr().out.strip() == "X = 5.000000000"


def test_runs_each_file_in_turn(program_file, capsys):
    first = program_file(ADD_AND_WRITE, "first.json")
    second = program_file([{"op": "WRITE", "left": {"str": "SECOND"}}, {"op": "STOP"}], "second.json")
    assert run_cli([first, second]) == 0
    assert [line.strip() for line in capsys.readouterr().out.splitlines()] == ["X = 5.000000000", "SECOND"]


def test_runtime_error_exits_one(program_file, capsys):
    assert run_cli([program_file(DETERMINANT)]) == 1
    err = capsys.readouterr().err
    assert "cupl: DET is not yet implemented (statement 1)" in err
    assert "Traceback" not in err


def test_verbose_error_prints_traceback(program_file, capsys):
    assert run_cli(["-v", "3", program_file(DETERMINANT)]) == 1
    err = capsys.readouterr().err
    assert "Traceback (most recent call last):" in err
    assert "cupl: [s_000000] <top-level>: statement 0: ALLOCATE" in err


def test_traceback_json(program_file, capsys):
    assert run_cli(["--traceback-json", program_file(DETERMINANT)]) == 1
    err = capsys.readouterr().err
    payload = err[err.index("{"):]
    data = json.loads(payload)
    assert data["error"]["rule"] == "DET"
    assert data["traceback"][0]["name"] == "<top-level>"


def test_check_error_exits_one(program_file, capsys):
    path = program_file([{"op": "GO", "left": {"id": "NOWHERE"}}, {"op": "STOP"}])
    assert run_cli([path]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert f"cupl: {path}: label NOWHERE is referenced but never defined" in captured.err


def test_malformed_tree_exits_one(program_file, capsys):
    assert run_cli([program_file([{"op": "NOPE"}])]) == 1
    assert "unknown node type 'NOPE'" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    missing = str(tmp_path / "absent.json")
    assert run_cli([missing]) == 1
    assert f"cupl: can't open file {missing}" in capsys.readouterr().err


def test_line_and_field_width(program_file, capsys):
    assert run_cli(["-w", "20", "-f", "10", program_file(ADD_AND_WRITE)]) == 0
    # the pair fills the 20-column line exactly, so no newline is added
    assert capsys.readouterr().out == "      X = 5.0000    "


def test_bad_widths_are_usage_errors(program_file):
    with pytest.raises(SystemExit) as info:
        run_cli(["-f", "2", program_file(ADD_AND_WRITE)])
    assert info.value.code == 2
