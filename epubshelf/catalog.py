from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Iterable, Optional

from .genres import clean_label, collapse_whitespace, derive_genres, unique_strings
from .manifest import load_manifest
from .models import CatalogBook, ManifestEntry
from .search import filter_books_by_genre, recommend_books, search_books

UNTITLED = "Untitled"
TOP_GENRE_LIMIT = 24
TOP_GENRE_MIN_COUNT = 2

TEXT_KEYS = ("#text", "text", "value", "label", "name", "content")
META_KEY_ATTRIBUTES = ("property", "name", "rel")

# field -> (dc element, lower-cased <meta> property/name keys), in priority order
METADATA_FIELDS: dict[str, tuple[str, tuple[str, ...]]] = {
    "summary": (
        "description",
        (
            "description",
            "dc:description",
            "dcterms:description",
            "schema:description",
            "summary",
            "abstract",
            "schema:abstract",
        ),
    ),
    "language": ("language", ("language", "dc:language")),
    "publisher": ("publisher", ("publisher",)),
    "published": ("date", ("published", "publicationdate")),
    "rights": ("rights", ("rights",)),
}


def _as_list(value: object) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def node_text(node: object) -> Optional[str]:
    if isinstance(node, str):
        return node.strip() or None
    if isinstance(node, dict):
        for key in TEXT_KEYS:
            candidate = node.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


def _texts(metadata: dict, *tags: str) -> list[str]:
    values: list[str] = []
    for tag in tags:
        values.extend(text for text in map(node_text, _as_list(metadata.get(tag))) if text)
    return values


def meta_value(meta_entries: Iterable[object], keys: Iterable[str]) -> Optional[str]:
    wanted = set(keys)
    for meta in meta_entries:
        if not isinstance(meta, dict):
            continue
        prop = meta.get("property") or meta.get("name") or meta.get("rel") or ""
        if isinstance(prop, str) and prop.lower() in wanted:
            return node_text({key: value for key, value in meta.items() if key not in META_KEY_ATTRIBUTES})
    return None


def metadata_field(metadata: dict, name: str) -> Optional[str]:
    dc_tag, meta_keys = METADATA_FIELDS[name]
    values = _texts(metadata, dc_tag)
    if values:
        return values[0]
    return meta_value(_as_list(metadata.get("meta")), meta_keys)


def build_search_text(fields: Iterable[Optional[str]]) -> str:
    return collapse_whitespace(" ".join(field for field in fields if field)).lower()


def normalize_entry(entry: ManifestEntry) -> CatalogBook:
    """Derive the searchable catalog view of one manifest entry."""
    metadata = entry.metadata if isinstance(entry.metadata, dict) else {}

    title = clean_label(entry.title) or UNTITLED
    authors = unique_strings(_texts(metadata, "creator", "author"))
    if not authors and entry.author:
        authors = [entry.author]
    subjects = unique_strings(clean_label(subject) for subject in _texts(metadata, "subject"))
    identifiers = unique_strings(_texts(metadata, "identifier"))
    contributors = unique_strings(_texts(metadata, "contributor"))

    fields = {name: metadata_field(metadata, name) for name in METADATA_FIELDS}
    genres = derive_genres(subjects, fields["summary"], fields["publisher"], title)
    keywords = unique_strings([*subjects, *genres, *identifiers, *authors, *contributors])

    file_name = entry.file.name if entry.file else None
    search_text = build_search_text(
        [
            title,
            fields["summary"],
            fields["publisher"],
            fields["published"],
            fields["language"],
            fields["rights"],
            *authors,
            *subjects,
            *genres,
            *identifiers,
            *keywords,
            file_name,
        ]
    )

    fallback_id = entry.content_hash or entry.paths.get("epub") or title
    return CatalogBook(
        id=entry.id or fallback_id,
        content_hash=entry.content_hash or entry.id or fallback_id,
        title=title,
        author=authors[0] if authors else None,
        authors=tuple(authors),
        contributors=tuple(contributors),
        summary=fields["summary"],
        subjects=tuple(subjects),
        genres=tuple(genres),
        identifiers=tuple(identifiers),
        keywords=tuple(keywords),
        language=fields["language"],
        publisher=fields["publisher"],
        published=fields["published"],
        rights=fields["rights"],
        search_text=search_text,
        cover=entry.cover,
        metadata=metadata,
        manifest=tuple(entry.manifest),
        spine=tuple(entry.spine),
        paths={**entry.paths},
        file=entry.file,
    )


def title_sort_key(book: CatalogBook) -> tuple[str, str]:
    return (book.title.casefold(), book.title)


def top_genres(books: Iterable[CatalogBook], limit: int = TOP_GENRE_LIMIT) -> list[str]:
    counts: Counter[str] = Counter()
    names: dict[str, str] = {}
    for book in books:
        for genre in book.genres:
            key = genre.lower()
            names.setdefault(key, genre)
            counts[key] += 1
    ranked = sorted(
        (key for key, count in counts.items() if count >= TOP_GENRE_MIN_COUNT),
        key=lambda key: (-counts[key], names[key].casefold(), names[key]),
    )
    return [names[key] for key in ranked[:limit]]


class Catalog:
    """Read-only, title-ordered set of normalized books with lookup indexes."""

    def __init__(self, books: Iterable[CatalogBook]) -> None:
        ordered: list[CatalogBook] = []
        self._by_id: dict[str, CatalogBook] = {}
        self._by_hash: dict[str, CatalogBook] = {}
        for book in sorted(books, key=title_sort_key):
            if book.id in self._by_id:
                continue
            self._by_id[book.id] = book
            self._by_hash.setdefault(book.content_hash, book)
            ordered.append(book)
        self.books: tuple[CatalogBook, ...] = tuple(ordered)
        self.genres: list[str] = top_genres(self.books)

    @classmethod
    def from_entries(cls, entries: Iterable[ManifestEntry]) -> "Catalog":
        return cls(normalize_entry(entry) for entry in entries)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Catalog":
        return cls.from_entries(load_manifest(path))

    def __len__(self) -> int:
        return len(self.books)

    def __iter__(self):
        return iter(self.books)

    def get_book_by_id(self, book_id: str) -> Optional[CatalogBook]:
        return self._by_id.get(book_id)

    def get_book_by_hash(self, digest: str) -> Optional[CatalogBook]:
        return self._by_hash.get(digest)

    def search(self, query: str) -> list[CatalogBook]:
        return search_books(self.books, query)

    def filter_by_genre(self, label: str) -> list[CatalogBook]:
        return filter_books_by_genre(self.books, label)

    def recommended(self, library_ids: Iterable[str]) -> list[CatalogBook]:
        return recommend_books(self.books, library_ids)
