from __future__ import annotations

from pathlib import Path

import cardsched.db as dbmod
from cardsched.main import main


def run_cli(capsys, *argv: str) -> tuple[int, str, str]:
    code = main(["--user", "u1", "--language", "nl", *argv])
    out, err = capsys.readouterr()
    return code, out, err


def test_cli_review_and_drill_flow(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(dbmod, "DB_PATH", tmp_path / "cli.db", raising=False)

    assert run_cli(capsys, "add-card", "c1", "huis", "--meaning", "house")[0] == 0
    assert run_cli(capsys, "add-group", "g1", "Home")[0] == 0
    assert run_cli(capsys, "assign", "c1", "g1")[0] == 0

    code, out, _ = run_cli(capsys, "due")
    assert code == 0 and "c1: huis - house" in out

    code, out, _ = run_cli(capsys, "grade", "c1", "medium")
    assert code == 0 and "interval 1d" in out
    assert "Nothing due" in run_cli(capsys, "due")[1]

    code, out, _ = run_cli(capsys, "pile", "g1", "--limit", "3")
    assert code == 0 and "limit 3" in out

    code, out, _ = run_cli(capsys, "draw", "g1")
    assert code == 0 and "Drew 1 card(s)" in out and "draw_pile:g1" in out
    assert "c1: huis" in run_cli(capsys, "context")[1]

    code, out, _ = run_cli(capsys, "dismiss", "c1")
    assert code == 0 and "dismissed" in out
    assert "empty" in run_cli(capsys, "context")[1]

    code, out, _ = run_cli(capsys, "stats")
    assert "Reviews: 1" in out and "dismissed 1" in out


def test_cli_errors_exit_nonzero(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(dbmod, "DB_PATH", tmp_path / "cli.db", raising=False)

    code, _, err = run_cli(capsys, "grade", "missing", "easy")
    assert code == 1 and "not found" in err

    code, _, err = run_cli(capsys, "pile", "nope", "--limit", "0")
    assert code == 1 and "Error:" in err

    code = main(["--user", "", "--language", "", "context"])
    assert code == 1


def test_cli_inbox_and_languages(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(dbmod, "DB_PATH", tmp_path / "cli.db", raising=False)

    code, out, _ = run_cli(capsys, "add-language", "Dutch", "--level", "B1")
    assert code == 0 and "Studying Dutch (nl, B1)" in out
    assert "- nl: Dutch B1" in run_cli(capsys, "languages")[1]

    assert run_cli(capsys, "capture", "n1", "het huis")[0] == 0
    assert run_cli(capsys, "capture", "n2", "de boom", "--source", "api")[0] == 0
    code, out, _ = run_cli(capsys, "defer", "n2")
    assert code == 0 and "deferred" in out
    assert "Inbox: 2 note(s)" in run_cli(capsys, "inbox")[1]

    code, out, _ = run_cli(capsys, "process", "n1", "c1", "huis", "--meaning", "house")
    assert code == 0 and "processed into c1" in out
    assert "Inbox: 1 note(s)" in run_cli(capsys, "inbox")[1]
    assert "c1" not in run_cli(capsys, "due")[1]

    code, _, err = run_cli(capsys, "process", "n1", "c2", "boom")
    assert code == 1 and "Error:" in err

    code, out, _ = run_cli(capsys, "stats")
    assert "Inbox: captured 2, processed 1, deferred 1" in out
