#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from epubshelf.catalog import Catalog
from epubshelf.db import SqliteProgressStore, db_path
from epubshelf.manifest import generate_manifest, load_manifest, publish_archives
from epubshelf.models import CatalogBook
from epubshelf.reader import ReaderSession, SessionState
from epubshelf.storage import LocalArchiveStore, archive_store_dir, manifest_path

DEFAULT_USER = "local"


def _path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest EPUB archives, browse the catalog and read books.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", help="Project root (default: $EPUBSHELF_ROOT or the current directory)")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", parents=[common], help="Rebuild the manifest and cover assets")
    generate.add_argument("--epub-dir", help="Directory of .epub archives")
    generate.add_argument("--cover-dir", help="Cover output directory (wiped first)")
    generate.add_argument("--manifest", help="Manifest JSON output path")
    generate.add_argument("--cover-assets", help="Cover lookup JSON output path")

    publish = commands.add_parser("publish", parents=[common], help="Copy manifest archives into the archive store")
    publish.add_argument("--manifest", help="Manifest JSON path")
    publish.add_argument("--archive-dir", help="Archive store directory")
    publish.add_argument("--db", help="SQLite database path")

    search = commands.add_parser("search", parents=[common], help="Search the catalog")
    search.add_argument("query", nargs="+", help="Search terms (all must match)")
    search.add_argument("--manifest", help="Manifest JSON path")

    genres = commands.add_parser("genres", parents=[common], help="List the most common genres")
    genres.add_argument("--manifest", help="Manifest JSON path")

    read = commands.add_parser("read", parents=[common], help="Open a book and show the current chapter")
    read.add_argument("book_id", help="Book id or content hash")
    read.add_argument("--user", default=DEFAULT_USER, help="Reader id for saved progress")
    read.add_argument("--manifest", help="Manifest JSON path")
    read.add_argument("--archive-dir", help="Archive store directory")
    read.add_argument("--db", help="SQLite database path")
    step = read.add_mutually_exclusive_group()
    step.add_argument("--next", action="store_true", help="Advance one chapter")
    step.add_argument("--previous", action="store_true", help="Go back one chapter")
    return parser.parse_args(argv)


def _load_catalog(args: argparse.Namespace, root: Optional[Path]) -> Catalog:
    return Catalog.load(_path(args.manifest) or manifest_path(root))


def cmd_generate(args: argparse.Namespace, root: Optional[Path]) -> int:
    manifest_file = _path(args.manifest) or manifest_path(root)
    entries = generate_manifest(
        root,
        epub_dir=_path(args.epub_dir),
        cover_dir=_path(args.cover_dir),
        manifest_file=manifest_file,
        cover_assets_file=_path(args.cover_assets),
    )
    print(f"Wrote {len(entries)} entries to {manifest_file}")
    return 0


def cmd_publish(args: argparse.Namespace, root: Optional[Path]) -> int:
    entries = load_manifest(_path(args.manifest) or manifest_path(root))
    db_file = _path(args.db) or db_path(root)
    store = LocalArchiveStore(_path(args.archive_dir) or archive_store_dir(root), db_file)
    published = publish_archives(entries, store, root)
    print(f"Published {len(published)} of {len(entries)} archives to {store.base}")
    return 0


def cmd_search(args: argparse.Namespace, root: Optional[Path]) -> int:
    for book in _load_catalog(args, root).search(" ".join(args.query)):
        print(f"{book.id}\t{book.title}")
    return 0


def cmd_genres(args: argparse.Namespace, root: Optional[Path]) -> int:
    for genre in _load_catalog(args, root).genres:
        print(genre)
    return 0


async def _read(session: ReaderSession, book: CatalogBook, args: argparse.Namespace) -> None:
    if not await session.open(book):
        return
    if args.next:
        await session.next()
    elif args.previous:
        await session.previous()


def cmd_read(args: argparse.Namespace, root: Optional[Path]) -> int:
    catalog = _load_catalog(args, root)
    book = catalog.get_book_by_id(args.book_id) or catalog.get_book_by_hash(args.book_id)
    if book is None:
        print(f"Unknown book: {args.book_id}", file=sys.stderr)
        return 1

    db_file = _path(args.db) or db_path(root)
    store = LocalArchiveStore(_path(args.archive_dir) or archive_store_dir(root), db_file)
    session = ReaderSession(store, SqliteProgressStore(args.user, db_file))
    asyncio.run(_read(session, book, args))
    if session.state is not SessionState.READY:
        print(session.error or "Unable to open book", file=sys.stderr)
        return 1

    chapter = session.current_chapter
    print(f"{book.title}: {chapter.title}")
    print(f"Chapter {session.index + 1} of {len(session.chapters)} ({session.percent_complete:.1f}%)")
    session.close()
    return 0


COMMANDS = {
    "generate": cmd_generate,
    "publish": cmd_publish,
    "search": cmd_search,
    "genres": cmd_genres,
    "read": cmd_read,
}


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[epubshelf] %(levelname)s %(message)s",
    )
    root = _path(args.root)
    try:
        return COMMANDS[args.command](args, root)
    except FileNotFoundError as exc:
        print(f"File not found: {exc.filename}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1


def cli() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
