from __future__ import annotations

from pathlib import Path

import pytest

from src.loaders.markdown import load_document_bytes, load_document_file, markdown_title
from src.rag.rewriter import DomainTermExpander, NoopExpander, OpenAIQueryExpander, build_expander
from tools.ingest_files import collect_records

pytestmark = pytest.mark.anyio


def test_markdown_bytes_take_title_from_heading() -> None:
    record = load_document_bytes(b"# Scaling Guide\n\nShard early.", source="docs/scaling.md")

    assert record.metadata["source"] == "docs/scaling.md"
    assert record.metadata["title"] == "Scaling Guide"
    assert record.metadata["source_type"] == "markdown"


def test_text_bytes_use_file_stem_as_title() -> None:
    record = load_document_bytes(b"plain notes", source="notes.txt", metadata={"category": "ops"})

    assert record.content == "plain notes"
    assert record.metadata == {
        "source": "notes.txt",
        "title": "notes",
        "source_type": "text",
        "category": "ops",
    }


def test_unsupported_suffix_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_document_bytes(b"%PDF", source="report.pdf")
    path = tmp_path / "data.csv"
    path.write_text("a,b", encoding="utf-8")
    with pytest.raises(ValueError):
        load_document_file(path)


def test_markdown_title_absent() -> None:
    assert markdown_title("no heading here\n## only level two") is None


def test_collect_records_filters_and_sorts(tmp_path: Path) -> None:
    (tmp_path / "b.md").write_text("# B\n\nSecond.", encoding="utf-8")
    (tmp_path / "a.txt").write_text("First.", encoding="utf-8")
    (tmp_path / "empty.md").write_text("   ", encoding="utf-8")
    (tmp_path / "skip.pdf").write_bytes(b"%PDF")
    nested = tmp_path / "nested"
    nested.mkdir()
    (nested / "c.md").write_text("Third.", encoding="utf-8")

    records = collect_records(tmp_path)
    recursive = collect_records(tmp_path, recursive=True)

    assert [record.metadata["source"] for record in records] == ["a.txt", "b.md"]
    assert records[1].metadata["title"] == "B"
    assert len(recursive) == 3


async def test_domain_expander_adds_two_terms_per_key() -> None:
    expander = DomainTermExpander()

    assert await expander.expand("api performance") == [
        "speed",
        "optimization",
        "endpoint",
        "rest",
    ]
    assert await expander.expand("performance speed") == ["optimization", "efficiency"]
    assert await expander.expand("gardening tips") == []


def test_build_expander_modes() -> None:
    common = dict(api_key="sk", base_url="https://openai.test/v1/", model="gpt", timeout=5.0)
    assert isinstance(build_expander("none", mock_mode=False, **common), NoopExpander)
    assert isinstance(build_expander("domain", mock_mode=False, **common), DomainTermExpander)
    assert isinstance(build_expander("llm", mock_mode=True, **common), DomainTermExpander)
    live = build_expander("llm", mock_mode=False, **common)
    assert isinstance(live, OpenAIQueryExpander)
    assert live.base_url == "https://openai.test/v1"
