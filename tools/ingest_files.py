from __future__ import annotations

"""CLI utility to ingest a directory of Markdown and text files."""

import argparse
import asyncio
import logging
from pathlib import Path

from src.app.dependencies import get_pipeline
from src.loaders.markdown import MARKDOWN_SUFFIXES, TEXT_SUFFIXES, load_document_file
from src.rag.types import IngestRecord


def collect_records(directory: Path, recursive: bool = False) -> list[IngestRecord]:
    """Load every supported file under directory, sorted by path."""
    pattern = "**/*" if recursive else "*"
    suffixes = MARKDOWN_SUFFIXES | TEXT_SUFFIXES
    records: list[IngestRecord] = []
    for path in sorted(directory.glob(pattern)):
        if not path.is_file() or path.suffix.lower() not in suffixes:
            continue
        record = load_document_file(path)
        if record.content.strip():
            records.append(record)
    return records


def main() -> None:
    """Ingest files into the configured vector index."""
    parser = argparse.ArgumentParser(description="Ingest .md and .txt files.")
    parser.add_argument("directory", type=Path, help="Directory containing documents.")
    parser.add_argument("--recursive", action="store_true", help="Descend into subdirectories.")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if not args.directory.is_dir():
        raise SystemExit(f"Not a directory: {args.directory}")
    records = collect_records(args.directory, recursive=args.recursive)
    if not records:
        raise SystemExit(f"No .md or .txt files found in {args.directory}")
    ingested = asyncio.run(get_pipeline().ingest(records))
    print(f"Ingested {ingested} chunks from {len(records)} files")


if __name__ == "__main__":
    main()
