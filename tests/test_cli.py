import argparse
import json
from types import SimpleNamespace

import pytest
from docx import Document

from doc_rewriter import cli
from doc_rewriter.adapters.docx_adapter import emit_docx, extract_text

from helpers import ScriptedProvider, make_registry

BODY = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 10


def _write_doc(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("".join(f"# {name}\n\n{BODY}\n\n" for name in ["One", "Two", "Three"]), encoding="utf-8")
    return path


def test_parse_selection():
    assert cli._parse_selection("0,2,5-7") == {0, 2, 5, 6, 7}
    assert cli._parse_selection(" 3 , ") == {3}
    assert cli._parse_selection("") is None
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_selection("a-b")


def test_bad_selection_is_a_usage_error(tmp_path):
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([str(tmp_path / "x.txt"), "--select", "one"])


@pytest.mark.parametrize("value", ["0", "-100", "big"])
def test_chunk_size_must_be_positive(tmp_path, capsys, value):
    path = _write_doc(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(path), "--list-chunks", "--chunk-size", value])
    assert excinfo.value.code == 2
    assert "expected a positive integer" in capsys.readouterr().err


def test_chunk_size_override_reaches_chunker(tmp_path, capsys):
    path = tmp_path / "plain.txt"
    path.write_text(("Plain sentence without any headings here. " * 60).strip(), encoding="utf-8")
    assert cli.main([str(path), "--list-chunks", "--chunk-size", "1000"]) == 0
    assert capsys.readouterr().out.startswith("3 chunks (fixed strategy)")


def test_list_chunks_makes_no_backend_calls(tmp_path, capsys):
    path = _write_doc(tmp_path)
    assert cli.main([str(path), "--list-chunks"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("3 chunks (heading strategy)")
    assert "[0] One (" in out
    assert "[2] Three (" in out


def test_rewrite_writes_bundle(tmp_path, capsys, monkeypatch):
    path = _write_doc(tmp_path)
    provider = ScriptedProvider(lambda text, prompt: text.replace("Lorem", "LOREM"))
    registry = make_registry(provider)
    monkeypatch.setattr(cli, "ProviderRegistry", SimpleNamespace(from_config=lambda config: registry))

    code = cli.main([
        str(path),
        "--provider", "mock",
        "--instructions", "Shout the filler",
        "--select", "0,2",
        "--no-smooth",
        "--docx",
        "--out", str(tmp_path / "out"),
    ])
    assert code == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["total_chunks"] == 3
    assert summary["succeeded"] == 2
    assert summary["skipped"] == 1
    assert [c["status"] for c in summary["chunks"]] == ["succeeded", "pending", "succeeded"]

    rewritten = open(summary["output_file"], encoding="utf-8").read()
    assert rewritten.count("LOREM") == 20
    assert "# Two\n\n" + BODY in rewritten
    assert "# Chunked Rewrite Report" in open(summary["report_file"], encoding="utf-8").read()
    assert summary["docx_file"].endswith("notes.rewritten.docx")


def test_missing_instructions(tmp_path, capsys, monkeypatch):
    path = _write_doc(tmp_path)
    monkeypatch.setattr(
        cli, "ProviderRegistry", SimpleNamespace(from_config=lambda config: make_registry(ScriptedProvider(None)))
    )
    assert cli.main([str(path), "--provider", "mock", "--out", str(tmp_path / "out")]) == 2
    assert "--instructions" in capsys.readouterr().err


def test_unknown_provider_exits_with_usage_code(tmp_path, capsys):
    path = _write_doc(tmp_path)
    code = cli.main([str(path), "--provider", "gemini", "--instructions", "x", "--out", str(tmp_path / "out")])
    assert code == 2
    assert "Unknown provider 'gemini'" in capsys.readouterr().err


def test_bad_config_file(tmp_path, capsys):
    path = _write_doc(tmp_path)
    config = tmp_path / "bad.yaml"
    config.write_text("pipeline: {nope: 1}\n", encoding="utf-8")
    assert cli.main([str(path), "--list-chunks", "--config", str(config)]) == 2
    assert "Unknown keys" in capsys.readouterr().err


def test_docx_round_trip(tmp_path):
    out = tmp_path / "out.docx"
    text = "# Report\n\nFirst paragraph.\n\n## Details\n\nSecond paragraph."
    emit_docx(text, str(out), title="Report")

    doc = Document(str(out))
    assert doc.core_properties.title == "Report"
    assert [p.style.name for p in doc.paragraphs] == ["Heading 1", "Normal", "Heading 2", "Normal"]

    title, extracted = extract_text(str(out))
    assert title == "Report"
    assert extracted == text


def test_docx_input_is_read_through_adapter(tmp_path):
    doc = Document()
    doc.add_heading("Memo", level=1)
    doc.add_paragraph("Body text.")
    path = tmp_path / "memo.docx"
    doc.save(str(path))

    name, text = cli._read_input(str(path))
    assert name == "Memo"
    assert text == "# Memo\n\nBody text."
