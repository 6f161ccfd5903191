"""Tests for the domain_filter command line interface."""

# pylint: disable=missing-function-docstring, redefined-outer-name
from pytest import fixture

from domain_filter.cli import main


@fixture
def store_path(tmp_path):
    return str(tmp_path / "store.json")


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def run(store_path, *args):
    return main(["--store", store_path, *args])


def test_import_then_list(tmp_path, store_path, capsys):
    path = write(tmp_path, "list.txt", "! my list\n||a.com^\n@@||ok.a.com^\n")

    assert run(store_path, "import", path) == 0
    assert "Manual source added: 2 rules" in capsys.readouterr().out

    assert run(store_path, "import", path) == 0
    assert "Manual source updated" in capsys.readouterr().out

    assert run(store_path, "list") == 0
    out = capsys.readouterr().out
    assert "1 source(s)" in out
    assert "[0] manual" in out


def test_list_without_sources(store_path, capsys):
    assert run(store_path, "list") == 0
    assert "No sources imported" in capsys.readouterr().out


def test_rejected_import_reports_error(tmp_path, store_path, capsys):
    path = write(tmp_path, "bad.txt", "||a.com^\nnot a rule\n")

    assert run(store_path, "import", path) == 1
    assert "❌ ERROR" in capsys.readouterr().err


def test_missing_file_reports_error(tmp_path, store_path, capsys):
    assert run(store_path, "import", str(tmp_path / "nope.txt")) == 1
    assert "❌ ERROR" in capsys.readouterr().err


def test_preview_lists_invalid_lines(tmp_path, store_path, capsys):
    path = write(tmp_path, "list.txt", "||a.com^\nbroken\n@@||b.com^\n")

    assert run(store_path, "preview", path) == 1
    out = capsys.readouterr().out
    assert "line 2: missing rule prefix" in out


def test_export_prints_merged_policy(tmp_path, store_path, capsys):
    path = write(tmp_path, "list.txt", "||a.com^\n@@||ok.a.com^\n")
    run(store_path, "import", path)
    capsys.readouterr()

    assert run(store_path, "export") == 0
    out = capsys.readouterr().out
    assert "! Total rules: 2" in out
    assert out.rstrip().endswith("@@||ok.a.com^\n||a.com^")


def test_blacklist_check(tmp_path, store_path, capsys):
    path = write(tmp_path, "blacklist.txt", "bad.com\n*.tracker.net\n")

    assert run(store_path, "set-list", "blacklist", path) == 0
    assert run(store_path, "mode", "blacklist") == 0
    capsys.readouterr()

    assert run(store_path, "check", "https://bad.com/page") == 3
    assert "blocked" in capsys.readouterr().out
    assert run(store_path, "check", "https://x.tracker.net") == 3
    assert run(store_path, "check", "https://good.com") == 0


def test_invalid_domain_list_is_rejected(tmp_path, store_path, capsys):
    path = write(tmp_path, "whitelist.txt", "ok.com\nnot ok\n")

    assert run(store_path, "set-list", "whitelist", path) == 1
    assert '"not ok" is not a valid domain' in capsys.readouterr().err


def test_reload_manual_source_fails(tmp_path, store_path, capsys):
    run(store_path, "import", write(tmp_path, "list.txt", "||a.com^\n"))

    assert run(store_path, "reload", "0") == 1
    assert "Manual sources cannot be reloaded" in capsys.readouterr().err


def test_delete(tmp_path, store_path, capsys):
    run(store_path, "import", write(tmp_path, "list.txt", "||a.com^\n"))
    capsys.readouterr()

    assert run(store_path, "delete", "5") == 0
    assert "nothing deleted" in capsys.readouterr().out

    assert run(store_path, "delete", "0") == 0
    assert "0 remaining" in capsys.readouterr().out
