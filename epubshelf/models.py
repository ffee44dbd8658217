from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: Optional[str] = None
    title: Optional[str] = None
    properties: tuple[str, ...] = ()


@dataclass(frozen=True)
class SpineItemRef:
    idref: str
    linear: Optional[bool] = None


@dataclass(frozen=True)
class CoverAsset:
    uri: str
    media_type: Optional[str] = None


@dataclass(frozen=True)
class FileInfo:
    name: str
    size: int


@dataclass
class ManifestEntry:
    """One ingested archive, as persisted in the manifest artifact."""

    id: str
    content_hash: str
    title: str
    author: Optional[str] = None
    genres: list[str] = field(default_factory=list)
    cover: Optional[CoverAsset] = None
    metadata: dict = field(default_factory=dict)
    manifest: list[ManifestItem] = field(default_factory=list)
    spine: list[SpineItemRef] = field(default_factory=list)
    spine_attributes: dict[str, str] = field(default_factory=dict)
    guide: Optional[object] = None
    collection: Optional[object] = None
    bindings: Optional[object] = None
    package: Optional[dict] = None
    paths: dict[str, str] = field(default_factory=dict)
    file: Optional[FileInfo] = None


@dataclass(frozen=True)
class CatalogBook:
    id: str
    content_hash: str
    title: str
    author: Optional[str]
    authors: tuple[str, ...]
    contributors: tuple[str, ...]
    summary: Optional[str]
    subjects: tuple[str, ...]
    genres: tuple[str, ...]
    identifiers: tuple[str, ...]
    keywords: tuple[str, ...]
    language: Optional[str]
    publisher: Optional[str]
    published: Optional[str]
    rights: Optional[str]
    search_text: str
    cover: Optional[CoverAsset] = None
    metadata: dict = field(default_factory=dict, compare=False)
    manifest: tuple[ManifestItem, ...] = ()
    spine: tuple[SpineItemRef, ...] = ()
    paths: dict[str, str] = field(default_factory=dict, compare=False)
    file: Optional[FileInfo] = None


@dataclass(frozen=True)
class Chapter:
    id: str
    title: str
    text: str


@dataclass
class ReadingProgress:
    percent_complete: float
    last_location: dict = field(default_factory=dict)

    @property
    def spine_index(self) -> Optional[int]:
        value = self.last_location.get("spineIndex") if isinstance(self.last_location, dict) else None
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value


def manifest_item_to_dict(item: ManifestItem) -> dict:
    data: dict[str, object] = {"id": item.id, "href": item.href}
    if item.media_type:
        data["mediaType"] = item.media_type
    if item.title:
        data["title"] = item.title
    if item.properties:
        data["properties"] = list(item.properties)
    return data


def manifest_item_from_dict(data: dict) -> ManifestItem:
    return ManifestItem(
        id=str(data.get("id") or ""),
        href=str(data.get("href") or ""),
        media_type=data.get("mediaType") or data.get("media-type"),
        title=data.get("title"),
        properties=tuple(data.get("properties") or ()),
    )


def spine_item_to_dict(itemref: SpineItemRef) -> dict:
    data: dict[str, object] = {"idref": itemref.idref}
    if itemref.linear is not None:
        data["linear"] = itemref.linear
    return data


def spine_item_from_dict(data: dict) -> SpineItemRef:
    linear = data.get("linear")
    if isinstance(linear, str):
        linear = linear.strip().lower() != "no"
    return SpineItemRef(idref=str(data.get("idref") or ""), linear=linear)


def entry_to_dict(entry: ManifestEntry) -> dict:
    data: dict[str, object] = {
        "id": entry.id,
        "contentHash": entry.content_hash,
        "title": entry.title,
    }
    if entry.author:
        data["author"] = entry.author
    data["genres"] = list(entry.genres)
    if entry.cover is not None:
        cover: dict[str, str] = {"uri": entry.cover.uri}
        if entry.cover.media_type:
            cover["mediaType"] = entry.cover.media_type
        data["cover"] = cover
    if entry.metadata:
        data["metadata"] = entry.metadata
    data["manifest"] = {"items": [manifest_item_to_dict(item) for item in entry.manifest]}
    data["spine"] = {**entry.spine_attributes, "itemrefs": [spine_item_to_dict(ref) for ref in entry.spine]}
    for key in ("guide", "collection", "bindings", "package"):
        value = getattr(entry, key)
        if value:
            data[key] = value
    data["paths"] = dict(entry.paths)
    if entry.file is not None:
        data["file"] = {"name": entry.file.name, "size": entry.file.size}
    return data


def entry_from_dict(data: dict) -> ManifestEntry:
    cover_data = data.get("cover")
    cover = None
    if isinstance(cover_data, dict) and cover_data.get("uri"):
        cover = CoverAsset(uri=cover_data["uri"], media_type=cover_data.get("mediaType"))

    manifest_data = data.get("manifest") or {}
    spine_data = dict(data.get("spine") or {})
    itemrefs = spine_data.pop("itemrefs", [])

    file_data = data.get("file")
    file_info = None
    if isinstance(file_data, dict) and file_data.get("name"):
        file_info = FileInfo(name=file_data["name"], size=int(file_data.get("size") or 0))

    content_hash = data.get("contentHash") or data.get("id") or ""
    return ManifestEntry(
        id=data.get("id") or content_hash,
        content_hash=content_hash,
        title=data.get("title", ""),
        author=data.get("author"),
        genres=list(data.get("genres", [])),
        cover=cover,
        metadata=dict(data.get("metadata") or {}),
        manifest=[manifest_item_from_dict(item) for item in manifest_data.get("items", [])],
        spine=[spine_item_from_dict(ref) for ref in itemrefs],
        spine_attributes={str(key): str(value) for key, value in spine_data.items()},
        guide=data.get("guide"),
        collection=data.get("collection"),
        bindings=data.get("bindings"),
        package=data.get("package"),
        paths=dict(data.get("paths") or {}),
        file=file_info,
    )


def progress_to_dict(progress: ReadingProgress) -> dict:
    return {
        "percentComplete": progress.percent_complete,
        "lastLocation": dict(progress.last_location),
    }
