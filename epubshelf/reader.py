from __future__ import annotations

import asyncio
from enum import Enum
import html
import logging
import re
from typing import Iterable, Optional, Protocol
import zipfile

from .epub import open_archive, resolve_opf_href
from .errors import (
    AssetNotFoundError,
    EpubError,
    NoReadableChaptersError,
    ProgressStoreError,
    ReaderError,
    SessionClosedError,
)
from .models import CatalogBook, Chapter, ManifestItem, ReadingProgress, SpineItemRef

TITLE_MAX_LENGTH = 80
SENTENCE_END_RE = re.compile(r"[.\n]")

logger = logging.getLogger("epubshelf.reader")


class ArchiveStore(Protocol):
    def storage_path_for(self, digest: str) -> Optional[str]: ...

    def fetch_archive_bytes(self, storage_path: str) -> bytes: ...


class ProgressStore(Protocol):
    def load_progress(self, book_id: str) -> Optional[ReadingProgress]: ...

    def save_progress(self, book_id: str, last_location: dict, percent: Optional[float] = None) -> None: ...


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "")).strip()


def _strip_markup(text: str) -> str:
    text = re.sub(r"(?is)<head\b[^>]*>.*?</head>", " ", text)
    text = re.sub(r"(?s)<!--.*?-->", " ", text)
    text = re.sub(r"(?is)<script\b[^>]*>.*?</script>", " ", text)
    text = re.sub(r"(?is)<style\b[^>]*>.*?</style>", " ", text)
    text = re.sub(r"(?s)<[^>]+>", " ", text)
    return html.unescape(text)


def html_to_text(content: bytes) -> str:
    """Plain text of an XHTML document: no head, comments, scripts or styles."""
    return _normalize_text(_strip_markup(content.decode("utf-8", errors="replace")))


def chapter_title(item: ManifestItem, text: str, position: int) -> str:
    if item.title:
        return item.title
    sentence = SENTENCE_END_RE.split(text, 1)[0].strip()
    if sentence:
        return sentence[:TITLE_MAX_LENGTH].rstrip()
    return f"Section {position}"


def resolve_chapters(
    data: bytes,
    opf_path: Optional[str],
    manifest: Iterable[ManifestItem],
    spine: Iterable[SpineItemRef],
) -> list[Chapter]:
    """Readable chapters in spine order.

    Item-refs without a manifest item, items whose archive entry is missing
    and documents with no text are skipped without complaint.
    """
    items = {item.id: item for item in manifest}
    chapters: list[Chapter] = []
    with open_archive(data) as archive:
        opf_path = opf_path or archive.opf_path
        for ref in spine:
            item = items.get(ref.idref)
            if item is None:
                continue
            member_path = resolve_opf_href(opf_path, item.href)
            raw = archive.read(member_path) if member_path else None
            if raw is None:
                continue
            text = html_to_text(raw)
            if not text:
                continue
            position = len(chapters) + 1
            chapters.append(Chapter(id=ref.idref, title=chapter_title(item, text, position), text=text))
    return chapters


def progress_percent(index: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, max(0.0, (index + 1) / total * 100))


class SessionState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class ReaderSession:
    """Chapter-by-chapter reading of one book at a time.

    Every ``open`` call takes a new generation number; a load whose
    generation is no longer current when it resumes is dropped without
    touching the session, so ``close`` (or a newer ``open``) wins over a
    slow fetch.
    """

    def __init__(self, archives: ArchiveStore, progress: ProgressStore) -> None:
        self.archives = archives
        self.progress = progress
        self.state = SessionState.IDLE
        self.book: Optional[CatalogBook] = None
        self.chapters: list[Chapter] = []
        self.index = 0
        self.error: Optional[str] = None
        self._generation = 0

    @property
    def current_chapter(self) -> Optional[Chapter]:
        if self.state is not SessionState.READY or not self.chapters:
            return None
        return self.chapters[self.index]

    @property
    def percent_complete(self) -> float:
        return progress_percent(self.index, len(self.chapters))

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.state is SessionState.LOADING

    async def open(self, book: CatalogBook) -> bool:
        if self.state is SessionState.CLOSED:
            raise SessionClosedError("Reading session is closed")
        self._generation += 1
        generation = self._generation
        self.book = book
        self.chapters = []
        self.index = 0
        self.error = None
        self.state = SessionState.LOADING

        try:
            storage_path = await asyncio.to_thread(self.archives.storage_path_for, book.content_hash)
            if not self._is_current(generation):
                return self._discard(book)
            if not storage_path:
                raise AssetNotFoundError(f'"{book.title}" has not been published to the archive store')
            data = await asyncio.to_thread(self.archives.fetch_archive_bytes, storage_path)
            if not self._is_current(generation):
                return self._discard(book)
            chapters = await asyncio.to_thread(
                resolve_chapters, data, book.paths.get("opf"), book.manifest, book.spine
            )
            if not self._is_current(generation):
                return self._discard(book)
            if not chapters:
                raise NoReadableChaptersError(f'"{book.title}" has no readable chapters')
            saved = await self._load_saved(book)
            if not self._is_current(generation):
                return self._discard(book)
        except (ReaderError, EpubError, OSError, zipfile.BadZipFile) as exc:
            if not self._is_current(generation):
                return self._discard(book)
            logger.warning("Failed to open %s: %s", book.id, exc)
            self.state = SessionState.ERROR
            self.error = str(exc) or exc.__class__.__name__
            return False

        start = saved.spine_index if saved is not None else None
        self.chapters = chapters
        self.index = min(max(start or 0, 0), len(chapters) - 1)
        self.state = SessionState.READY
        await self._persist()
        return True

    async def _load_saved(self, book: CatalogBook) -> Optional[ReadingProgress]:
        try:
            return await asyncio.to_thread(self.progress.load_progress, book.id)
        except ProgressStoreError as exc:
            logger.warning("Progress for %s not loaded: %s", book.id, exc)
            return None

    def _discard(self, book: CatalogBook) -> bool:
        logger.debug("Discarded stale load of %s", book.id)
        return False

    async def _persist(self) -> None:
        book = self.book
        if book is None or self.state is not SessionState.READY:
            return
        location = {"spineIndex": self.index}
        try:
            await asyncio.to_thread(self.progress.save_progress, book.id, location, self.percent_complete)
        except ProgressStoreError as exc:
            logger.warning("Progress for %s not saved: %s", book.id, exc)

    async def next(self) -> bool:
        if self.state is not SessionState.READY or self.index >= len(self.chapters) - 1:
            return False
        self.index += 1
        await self._persist()
        return True

    async def previous(self) -> bool:
        if self.state is not SessionState.READY or self.index <= 0:
            return False
        self.index -= 1
        await self._persist()
        return True

    def close(self) -> None:
        self._generation += 1
        self.state = SessionState.CLOSED
        self.book = None
        self.chapters = []
        self.index = 0
        self.error = None
