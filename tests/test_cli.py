# tests/test_cli.py
"""
Tests for the command-line front end (``python -m regionck``).
"""

import io
import json

import pytest

import regionck.__main__ as cli
from regionck.__main__ import main


CLEAN = """
fn clean {
    let x: i32;
    let p: &'p i32;
    block A { p = &'a x; use(*p); x = 1; return; }
}
"""

DIRTY = """
fn dirty {
    let i: i32;
    let r: &'r i32;
    block A { r = &'b i; goto B; }
    block B { i = 1; goto C; }
    block C { use(*r); return; }
}
"""

BROKEN = "fn broken {\n  block A { x = ; return; }\n}\n"


@pytest.fixture
def write(tmp_path):
    def _write(text, name="body.rck"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


class TestCheck:

    def test_clean_exits_zero(self, write, capsys):
        assert main(["check", write(CLEAN)]) == 0
        assert capsys.readouterr().out == "ok clean\n"

    def test_conflict_exits_one(self, write, capsys):
        assert main(["check", write(DIRTY)]) == 1
        out = capsys.readouterr().out
        assert "REGION CHECK: dirty" in out
        assert "shared borrow of i at A/0, write at B/0, used at C/0" in out

    def test_verbose_prints_summary(self, write, capsys):
        assert main(["check", "-v", write(CLEAN)]) == 0
        assert "REGION CHECK: clean" in capsys.readouterr().out

    def test_json(self, write, capsys):
        assert main(["check", "--json", write(CLEAN + DIRTY)]) == 1
        data = json.loads(capsys.readouterr().out)
        assert [d["function"] for d in data] == ["clean", "dirty"]
        assert data[0]["ok"] is True
        assert data[0]["narratives"] == []
        (narrative,) = data[1]["narratives"]
        assert narrative["action_to_use"] == ["B/0", "B/1", "C/0"]
        assert data[1]["conflicts"][0]["invalidating_point"] == "B/0"

    def test_function_selection(self, write, capsys):
        assert main(["check", "--function", "clean", write(CLEAN + DIRTY)]) == 0
        assert capsys.readouterr().out == "ok clean\n"

    def test_unknown_function(self, write, capsys):
        path = write(CLEAN)
        assert main(["check", "--function", "nope", path]) == 1
        assert "no function named 'nope'" in capsys.readouterr().err

    def test_workers(self, write, capsys):
        assert main(["check", "--workers", "2", "--json", write(CLEAN + DIRTY)]) == 1
        data = json.loads(capsys.readouterr().out)
        assert [d["ok"] for d in data] == [True, False]

    def test_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(CLEAN))
        assert main(["check", "-"]) == 0
        assert capsys.readouterr().out == "ok clean\n"


class TestConfigFile:

    def test_settings_applied(self, write, capsys):
        config = write(json.dumps({"detect_conflicts": False}), name="config.json")
        assert main(["check", "--config", config, write(DIRTY)]) == 0

    def test_unknown_key_rejected(self, write, capsys):
        config = write(json.dumps({"bogus": 1}), name="config.json")
        assert main(["check", "--config", config, write(CLEAN)]) == 1
        assert "unknown configuration key(s): bogus" in capsys.readouterr().err


class TestErrors:

    def test_parse_error_position(self, write, capsys):
        path = write(BROKEN)
        assert main(["check", path]) == 1
        err = capsys.readouterr().err
        assert err.startswith(f"{path}:2:")
        assert "error:" in err

    def test_missing_file(self, tmp_path, capsys):
        path = str(tmp_path / "absent.rck")
        assert main(["check", path]) == 1
        assert "body file not found" in capsys.readouterr().err

    def test_internal_error(self, write, monkeypatch, capsys):
        def boom(args):
            raise RuntimeError("kaboom")
        monkeypatch.setattr(cli, "cmd_check", boom)
        assert main(["check", write(CLEAN)]) == 2
        assert "Internal error:" in capsys.readouterr().err

    def test_interrupt(self, write, monkeypatch, capsys):
        def interrupted(args):
            raise KeyboardInterrupt
        monkeypatch.setattr(cli, "cmd_check", interrupted)
        assert main(["check", write(CLEAN)]) == 130
        assert "Interrupted." in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: regionck" in capsys.readouterr().out


class TestRegions:

    def test_json_regions(self, write, capsys):
        assert main(["regions", write(DIRTY)]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["dirty"]["r"] == ["A/1", "B/0", "B/1", "C/0"]
        assert data["dirty"]["b"] == ["A/1", "B/0", "B/1", "C/0"]

    def test_parse_error(self, write, capsys):
        assert main(["regions", write(BROKEN)]) == 1


class TestDot:

    def test_annotated_graph(self, write, capsys):
        assert main(["dot", write(DIRTY)]) == 0
        out = capsys.readouterr().out
        assert out.startswith("digraph CFG {")
        assert 'label="dirty";' in out
        assert "'b, 'r" in out
        assert '"A" -> "B"' in out

    def test_needs_single_function(self, write, capsys):
        assert main(["dot", write(CLEAN + DIRTY)]) == 1
        assert "pick one with --function" in capsys.readouterr().err

    def test_function_selection(self, write, capsys):
        assert main(["dot", "--function", "clean", write(CLEAN + DIRTY)]) == 0
        assert 'label="clean";' in capsys.readouterr().out
