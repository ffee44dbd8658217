from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path, PurePosixPath
import shutil
import tempfile
from typing import Optional

from .db import get_book_record, upsert_book_record
from .env import project_root, read_env, read_env_path
from .errors import ArchiveFetchError, AssetNotFoundError
from .models import ManifestEntry

PREFERRED_EPUB_DIR = Path("assets") / "@epubs"
LEGACY_EPUB_DIR = Path("assets") / "epubs"
COVER_DIR = Path("assets") / "@covers"
LEGACY_COVER_DIR = Path("assets") / "covers"
MANIFEST_FILE = Path("data") / "epub-manifest.json"
COVER_ASSETS_FILE = Path("data") / "cover-assets.json"
ARCHIVE_DIR = Path("storage")
ARCHIVE_PREFIX = "books"

COVER_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
}
DEFAULT_COVER_EXTENSION = "jpg"

logger = logging.getLogger("epubshelf.storage")


def _root(root: Optional[Path]) -> Path:
    return Path(root) if root is not None else project_root()


def _configured_path(name: str, root: Optional[Path], relative: Path) -> Path:
    # Environment overrides apply only to the default root.
    if root is not None:
        return Path(root) / relative
    return read_env_path(name, project_root() / relative)


def epub_input_dir(root: Optional[Path] = None) -> Path:
    if root is None:
        configured = read_env("EPUBSHELF_EPUB_DIR")
        if configured:
            return Path(configured).expanduser()
    base = _root(root)
    preferred = base / PREFERRED_EPUB_DIR
    return preferred if preferred.exists() else base / LEGACY_EPUB_DIR


def cover_output_dir(root: Optional[Path] = None) -> Path:
    return _configured_path("EPUBSHELF_COVER_DIR", root, COVER_DIR)


def legacy_cover_dir(root: Optional[Path] = None) -> Path:
    return _configured_path("EPUBSHELF_LEGACY_COVER_DIR", root, LEGACY_COVER_DIR)


def manifest_path(root: Optional[Path] = None) -> Path:
    return _configured_path("EPUBSHELF_MANIFEST_PATH", root, MANIFEST_FILE)


def cover_assets_path(root: Optional[Path] = None) -> Path:
    return _configured_path("EPUBSHELF_COVER_ASSETS_PATH", root, COVER_ASSETS_FILE)


def archive_store_dir(root: Optional[Path] = None) -> Path:
    return _configured_path("EPUBSHELF_ARCHIVE_DIR", root, ARCHIVE_DIR)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def cover_extension(media_type: Optional[str]) -> str:
    return COVER_EXTENSIONS.get((media_type or "").strip().lower(), DEFAULT_COVER_EXTENSION)


def cover_filename(digest: str, media_type: Optional[str]) -> str:
    return f"{digest}.{cover_extension(media_type)}"


def relative_uri(path: Path, root: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


def ensure_empty_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink(missing_ok=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        tmp_path.replace(path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def write_json(path: Path, data: object) -> None:
    payload = json.dumps(data, ensure_ascii=False, indent=2) + "\n"
    atomic_write_bytes(path, payload.encode("utf-8"))


def read_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def save_cover_bytes(cover_dir: Path, digest: str, media_type: Optional[str], data: bytes) -> Path:
    path = cover_dir / cover_filename(digest, media_type)
    atomic_write_bytes(path, data)
    logger.debug("cover written path=%s bytes=%d", path, len(data))
    return path


class LocalArchiveStore:
    """Content-addressed archive store on the local filesystem.

    Archives live at ``books/{contentHash}.epub`` below ``base``; the sqlite
    book-record table remembers which hashes have been materialized.
    """

    def __init__(self, base: Path, db_file: Optional[Path] = None) -> None:
        self.base = Path(base)
        self.db_file = db_file

    @staticmethod
    def storage_path(digest: str) -> str:
        return f"{ARCHIVE_PREFIX}/{digest}.epub"

    def _resolve(self, storage_path: str) -> Path:
        relative = PurePosixPath(storage_path)
        if relative.is_absolute() or ".." in relative.parts:
            raise AssetNotFoundError(f"Invalid storage path: {storage_path}")
        return self.base.joinpath(*relative.parts)

    def storage_path_for(self, digest: str) -> Optional[str]:
        record = get_book_record(digest, self.db_file)
        if not record:
            return None
        return record.get("storage_path") or None

    def publish(self, data: bytes, entry: ManifestEntry) -> str:
        storage_path = self.storage_path(entry.content_hash)
        atomic_write_bytes(self._resolve(storage_path), data)
        upsert_book_record(
            entry.content_hash,
            storage_path,
            entry.title,
            entry.file.name if entry.file else None,
            entry.file.size if entry.file else len(data),
            self.db_file,
        )
        return storage_path

    def fetch_archive_bytes(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        if not path.is_file():
            raise AssetNotFoundError(f"Archive not found in store: {storage_path}")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ArchiveFetchError(f"Failed to read archive {storage_path}: {exc}") from exc
