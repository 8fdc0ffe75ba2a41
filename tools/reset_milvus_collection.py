from __future__ import annotations

"""CLI utility to drop and recreate the Milvus collection."""

import argparse
from dataclasses import replace

from src.app.dependencies import build_embedder, build_milvus_config
from src.app.settings import settings
from src.vectorstore.milvus import MilvusVectorStore


def main() -> None:
    """Reset the configured Milvus collection using app settings."""
    parser = argparse.ArgumentParser(description="Drop and recreate Milvus collection.")
    parser.add_argument(
        "--collection",
        default=settings.milvus_collection,
        help="Collection name to reset.",
    )
    args = parser.parse_args()

    from pymilvus import connections, utility

    connections.connect(alias="default", uri=settings.milvus_uri, token=settings.milvus_token)

    if utility.has_collection(args.collection):
        print(f"Dropping collection: {args.collection}")
        utility.drop_collection(args.collection)

    embedder = build_embedder(mock_mode=False)
    config = replace(build_milvus_config(embedder.dimension), collection=args.collection)
    MilvusVectorStore(config=config)
    print(f"Recreated collection: {args.collection} (dim={config.dimension})")


if __name__ == "__main__":
    main()
