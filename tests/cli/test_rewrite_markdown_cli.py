from __future__ import annotations

import base64
import json
from pathlib import Path
import plistlib
import zlib

import pytest

from mathtag.cli.rewrite_markdown import main, read_markdown


def _tag(source: str) -> str:
    compressor = zlib.compressobj(wbits=-15)
    body = compressor.compress(plistlib.dumps({"source": source}, fmt=plistlib.FMT_BINARY)) + compressor.flush()
    return f'<embedded-meta type="latex">{base64.b64encode(body).decode("ascii")}</embedded-meta>'


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("MATHTAG_TAG_NAME", "MATHTAG_SOURCE_KEY", "MATHTAG_MAX_DEPTH"):
        monkeypatch.delenv(name, raising=False)


def test_cli_prints_rewritten_markdown(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    note = tmp_path / "note.md"
    note.write_text(f"Formula {_tag('x^2')}\n", encoding="utf-8")

    exit_code = main(["--path", str(note)])

    assert exit_code == 0
    assert capsys.readouterr().out == "Formula $x^2$\n"
    assert "embedded-meta" in note.read_text(encoding="utf-8")


def test_cli_rewrites_directory_in_place_with_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    docs = tmp_path / "docs"
    (docs / "nested").mkdir(parents=True)
    (docs / "a.md").write_text(f"{_tag('a')} and <embedded-meta>???</embedded-meta>", encoding="utf-8")
    (docs / "nested" / "b.markdown").write_text("no tags here", encoding="utf-8")
    (docs / "ignored.txt").write_text(_tag("c"), encoding="utf-8")

    exit_code = main(["--path", str(docs), "--in-place", "--report"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert payload["processed"] == 2
    first = payload["results"][0]
    assert first["source_path"].endswith("a.md")
    assert first["tag_count"] == 2
    assert first["rewritten_count"] == 1
    assert [outcome["status"] for outcome in first["outcomes"]] == ["rewritten", "failed"]
    assert (docs / "a.md").read_text(encoding="utf-8") == "$a$ and <embedded-meta>???</embedded-meta>"
    assert (docs / "nested" / "b.markdown").read_text(encoding="utf-8") == "no tags here"
    assert "embedded-meta" in (docs / "ignored.txt").read_text(encoding="utf-8")


def test_cli_rejects_bad_configuration(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    note = tmp_path / "note.md"
    note.write_text("text", encoding="utf-8")
    monkeypatch.setenv("MATHTAG_MAX_DEPTH", "-1")

    assert main(["--path", str(note)]) == 2


def test_read_markdown_detects_legacy_encoding(tmp_path: Path) -> None:
    note = tmp_path / "legacy.md"
    note.write_bytes("Формула энергии и массы: $E=mc^2$, записанная в старой кодировке.\n".encode("cp1251"))

    text, encoding = read_markdown(note)

    assert "Формула" in text
    assert encoding != "utf-8"


def test_cli_keeps_file_when_math_cannot_be_encoded_back(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    note = tmp_path / "legacy.md"
    text = f"Формула из старой заметки, сохранённой в кодировке Windows: {_tag('α+β')}\nКонец заметки.\n"
    original = text.encode("cp1251")
    note.write_bytes(original)

    exit_code = main(["--path", str(note), "--in-place", "--report"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 1
    assert note.read_bytes() == original
    assert payload["errors"][0]["source_path"] == str(note)
    assert "Cannot write back" in payload["errors"][0]["error"]


def test_cli_reports_missing_path(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    missing = tmp_path / "nowhere.md"

    exit_code = main(["--path", str(missing), "--report"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 1
    assert payload["processed"] == 0
    assert payload["errors"] == [{"source_path": str(missing), "error": "Path does not exist"}]
