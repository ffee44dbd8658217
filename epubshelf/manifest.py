from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional
import zipfile

from .env import project_root
from .epub import PackageModel, extract_package, open_archive
from .errors import CoverAssetMissingError, EpubError
from .genres import collapse_whitespace, infer_genres, strip_html
from .models import CoverAsset, FileInfo, ManifestEntry, entry_from_dict, entry_to_dict
from .storage import (
    LocalArchiveStore,
    content_hash,
    cover_assets_path,
    cover_output_dir,
    ensure_empty_dir,
    epub_input_dir,
    legacy_cover_dir,
    manifest_path,
    read_json,
    relative_uri,
    save_cover_bytes,
    write_json,
)

EPUB_SUFFIX = ".epub"

logger = logging.getLogger("epubshelf.manifest")


def _entry_genres(package: PackageModel) -> list[str]:
    subjects: list[str] = []
    for subject in package.subjects():
        cleaned = collapse_whitespace(subject)
        if cleaned and cleaned not in subjects:
            subjects.append(cleaned)
    if subjects:
        return subjects
    return infer_genres(
        strip_html(package.first_text("description")),
        package.first_text("publisher"),
        package.title,
    )


def _metadata_data(package: PackageModel) -> dict:
    data = package.metadata.to_data()
    if isinstance(data, dict):
        return data
    return {"#text": data} if data else {}


def extract_entry(
    epub_file: Path, cover_dir: Path, root: Path, mirror_dir: Optional[Path] = None
) -> ManifestEntry:
    data = epub_file.read_bytes()
    digest = content_hash(data)
    with open_archive(data) as archive:
        package = extract_package(archive)
        cover_bytes = archive.read(package.cover.member_path)
    if cover_bytes is None:
        raise CoverAssetMissingError(f'Cover asset "{package.cover.member_path}" not found in archive')

    cover_file = save_cover_bytes(cover_dir, digest, package.cover.media_type, cover_bytes)
    if mirror_dir is not None:
        save_cover_bytes(mirror_dir, digest, package.cover.media_type, cover_bytes)
    return ManifestEntry(
        id=digest,
        content_hash=digest,
        title=package.title,
        author=package.author,
        genres=_entry_genres(package),
        cover=CoverAsset(uri=relative_uri(cover_file, root), media_type=package.cover.media_type),
        metadata=_metadata_data(package),
        manifest=list(package.manifest),
        spine=list(package.spine),
        spine_attributes=dict(package.spine_attributes),
        guide=package.auxiliary.get("guide"),
        collection=package.auxiliary.get("collection"),
        bindings=package.auxiliary.get("bindings"),
        package=dict(package.package_attributes) or None,
        paths={"opf": package.opf_path},
        file=FileInfo(name=epub_file.name, size=len(data)),
    )


def iter_epub_files(epub_dir: Path) -> list[Path]:
    if not epub_dir.is_dir():
        return []
    files = [path for path in epub_dir.iterdir() if path.name.lower().endswith(EPUB_SUFFIX) and path.is_file()]
    return sorted(files, key=lambda path: (path.name.casefold(), path.name))


def cover_assets_table(entries: Iterable[ManifestEntry]) -> dict[str, dict[str, str]]:
    table = {entry.id: {"uri": entry.cover.uri} for entry in entries if entry.id and entry.cover is not None}
    return {book_id: table[book_id] for book_id in sorted(table)}


def write_manifest(path: Path, entries: Iterable[ManifestEntry]) -> None:
    write_json(path, [entry_to_dict(entry) for entry in entries])


def load_manifest(path: Optional[Path] = None) -> list[ManifestEntry]:
    data = read_json(path or manifest_path())
    if not isinstance(data, list):
        raise ValueError("Manifest artifact must be a JSON array")
    return [entry_from_dict(item) for item in data if isinstance(item, dict)]


def generate_manifest(
    root: Optional[Path] = None,
    *,
    epub_dir: Optional[Path] = None,
    cover_dir: Optional[Path] = None,
    manifest_file: Optional[Path] = None,
    cover_assets_file: Optional[Path] = None,
    mirror_cover_dir: Optional[Path] = None,
) -> list[ManifestEntry]:
    """Rebuild both manifest artifacts from the archives in ``epub_dir``.

    Covers go to ``assets/@covers`` and are mirrored into the legacy
    ``assets/covers`` unless an explicit ``cover_dir`` is given. Every cover
    directory is wiped first so no asset from a previous run survives. A
    broken archive is logged and skipped; it never aborts the run.
    """
    if cover_dir is None:
        cover_dir = cover_output_dir(root)
        if mirror_cover_dir is None:
            mirror_cover_dir = legacy_cover_dir(root)
    epub_dir = epub_dir or epub_input_dir(root)
    manifest_file = manifest_file or manifest_path(root)
    cover_assets_file = cover_assets_file or cover_assets_path(root)
    root = Path(root) if root is not None else project_root()
    if mirror_cover_dir is not None and Path(mirror_cover_dir).resolve() == Path(cover_dir).resolve():
        mirror_cover_dir = None

    ensure_empty_dir(cover_dir)
    if mirror_cover_dir is not None:
        ensure_empty_dir(mirror_cover_dir)

    entries: list[ManifestEntry] = []
    seen: dict[str, str] = {}
    for epub_file in iter_epub_files(epub_dir):
        rel_path = relative_uri(epub_file, root)
        try:
            entry = extract_entry(epub_file, cover_dir, root, mirror_cover_dir)
        except (EpubError, OSError, zipfile.BadZipFile) as exc:
            logger.warning("Skipped %s: %s", rel_path, exc)
            continue
        if entry.id in seen:
            logger.warning("Skipped %s: same content as %s", rel_path, seen[entry.id])
            continue
        seen[entry.id] = rel_path
        entry.paths["epub"] = rel_path
        entries.append(entry)

    write_manifest(manifest_file, entries)
    write_json(cover_assets_file, cover_assets_table(entries))
    noun = "entry" if len(entries) == 1 else "entries"
    logger.info("Wrote %d %s to %s and %s", len(entries), noun, manifest_file, cover_assets_file)
    return entries


def publish_archives(
    entries: Iterable[ManifestEntry], store: LocalArchiveStore, root: Optional[Path] = None
) -> dict[str, str]:
    """Copy each entry's source archive into the content-addressed store."""
    root = Path(root) if root is not None else project_root()
    published: dict[str, str] = {}
    for entry in entries:
        source = entry.paths.get("epub")
        if not source:
            logger.warning("Skipped %s: no source archive path recorded", entry.title)
            continue
        try:
            data = (root / source).read_bytes()
        except OSError as exc:
            logger.warning("Skipped %s: %s", source, exc)
            continue
        if content_hash(data) != entry.content_hash:
            logger.warning("Skipped %s: archive changed since the manifest was generated", source)
            continue
        published[entry.id] = store.publish(data, entry)
        logger.info("Published %s as %s", source, published[entry.id])
    return published
