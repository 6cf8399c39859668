"""Forum post ingestion entrypoint.

This script is *thin*: it loads configuration, reads forum
posts from a JSON Lines export, and runs them through the ingestion pipeline
(preprocess + chunk → embed → upsert into the configured vector store).

Design goals
------------
- No hard-coded absolute paths.
- Config-first: most parameters come from YAML, with CLI overrides.
- Works when running from a repo checkout (adds `<repo>/src` to sys.path).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterator

# Make `src/forum_rag` importable when running from a repo checkout.
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from forum_rag.app.container import build_container
from forum_rag.common.logging_utils import configure_logging_from_config
from forum_rag.common.schemas import ForumPost
from forum_rag.config import GlobalConfig
from forum_rag.pipelines.ingestion_pipeline import summarize

logger = logging.getLogger("forum_rag.scripts.ingest")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest forum posts into the vector store")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--input",
        "-i",
        required=True,
        type=str,
        help="JSON Lines file with one forum post per line",
    )
    parser.add_argument(
        "--limit",
        "-l",
        required=False,
        type=int,
        default=None,
        help="Maximum number of posts to ingest (optional; defaults to no limit).",
    )
    parser.add_argument(
        "--collection-name",
        required=False,
        type=str,
        default=None,
        help="Override vector_store.collection_name from config (optional).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only chunk the posts and print statistics; nothing is embedded or written.",
    )

    return parser.parse_args()


def read_posts(path: Path, limit: int | None = None) -> Iterator[ForumPost]:
    with path.open("r", encoding="utf-8") as f:
        count = 0
        for line_no, line in enumerate(f, start=1):
            if limit is not None and count >= limit:
                return
            line = line.strip()
            if not line:
                continue
            try:
                yield ForumPost.from_dict(json.loads(line))
            except (ValueError, KeyError) as exc:
                raise ValueError(f"{path}:{line_no}: invalid post record ({exc})") from exc
            count += 1


def _override_collection_name(cfg: GlobalConfig, cli_value: str | None) -> None:
    if not cli_value:
        return
    section = cfg.raw.setdefault("vector_store", {})
    if not isinstance(section, dict):
        raise TypeError("'vector_store' config must be a mapping.")
    section["collection_name"] = cli_value


async def run(args: argparse.Namespace) -> int:
    cfg = GlobalConfig.load(args.config_file)
    configure_logging_from_config(cfg.logging)
    _override_collection_name(cfg, args.collection_name)

    container = build_container(cfg)
    posts = read_posts(Path(args.input), args.limit)
    started = time.perf_counter()

    try:
        if args.dry_run:
            total_posts = total_chunks = skipped = 0
            for post in posts:
                chunks, _, _ = container.ingestion_pipeline.build_payloads(post)
                total_posts += 1
                total_chunks += len(chunks)
                skipped += 0 if chunks else 1
            print(f"Posts: {total_posts}  chunks: {total_chunks}  skipped: {skipped} (dry run)")
            return 0

        print("Preparing vector store collection...")
        await container.vector_store.ensure_collection()

        print("Ingesting posts...")
        outcomes = await container.ingestion_pipeline.ingest_posts(posts)
        stats = summarize(outcomes)
        elapsed = time.perf_counter() - started
        print(
            f"Posts: {stats['posts']}  chunked: {stats['chunked']}  skipped: {stats['skipped']}  "
            f"chunks: {stats['chunks']}  vectors: {stats['vectors']}  ({elapsed:.1f}s)"
        )
        return 0
    finally:
        await container.aclose()


def main() -> None:
    args = parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
