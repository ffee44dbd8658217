from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
import posixpath
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote
import zipfile
import zlib

from .errors import (
    CoverAssetMissingError,
    CoverItemNotFoundError,
    MalformedContainerError,
    MalformedPackageError,
    MissingCoverDeclarationError,
    MissingMetadataError,
    MissingOpfError,
    MissingTitleError,
    NonImageCoverError,
)
from .models import ManifestItem, SpineItemRef
from .xmltree import XmlElement, parse_xml

CONTAINER_PATH = "META-INF/container.xml"
AUXILIARY_SECTIONS = ("guide", "collection", "bindings")

IMAGE_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
}


@dataclass(frozen=True)
class CoverReference:
    item_id: str
    href: str
    media_type: str
    member_path: str


@dataclass
class PackageModel:
    opf_path: str
    title: str
    author: Optional[str]
    metadata: XmlElement
    cover: CoverReference
    manifest: list[ManifestItem] = field(default_factory=list)
    spine: list[SpineItemRef] = field(default_factory=list)
    spine_attributes: dict[str, str] = field(default_factory=dict)
    auxiliary: dict[str, object] = field(default_factory=dict)
    package_attributes: dict[str, str] = field(default_factory=dict)

    def subjects(self) -> list[str]:
        return [node.text for node in self.metadata.elements("subject") if node.text]

    def first_text(self, tag: str) -> Optional[str]:
        node = self.metadata.first(tag)
        if node is None:
            return None
        return node.text or None


def canonical_member(name: str) -> str:
    normalized = posixpath.normpath((name or "").replace("\\", "/")).lstrip("/")
    while normalized.startswith("../"):
        normalized = normalized[3:]
    return "" if normalized in {"", ".", ".."} else normalized


def opf_directory(opf_path: str) -> str:
    parent = PurePosixPath(opf_path).parent.as_posix()
    return "" if parent == "." else parent


def resolve_opf_href(opf_path: str, href: str) -> str:
    target = (href or "").split("#", 1)[0].strip()
    if not target:
        return ""
    return canonical_member(posixpath.join(opf_directory(opf_path), target))


def guess_image_media_type(href: str) -> Optional[str]:
    return IMAGE_MEDIA_TYPES.get(PurePosixPath(href.split("#", 1)[0]).suffix.lower())


class EpubArchive:
    """Random-access view over the entries of an OCF zip container."""

    def __init__(self, data: bytes) -> None:
        try:
            self._zip = zipfile.ZipFile(BytesIO(data), "r")
        except zipfile.BadZipFile as exc:
            raise MalformedContainerError(f"Not a zip container: {exc}") from exc
        self._index: dict[str, str] = {}
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            canonical = canonical_member(info.filename)
            if canonical and canonical not in self._index:
                self._index[canonical] = info.filename
        self._opf_path: Optional[str] = None

    def __enter__(self) -> "EpubArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def locate(self, member_path: str) -> Optional[str]:
        canonical = canonical_member(member_path)
        if not canonical:
            return None
        if canonical in self._index:
            return self._index[canonical]
        decoded = canonical_member(unquote(canonical))
        return self._index.get(decoded)

    def has(self, member_path: str) -> bool:
        return self.locate(member_path) is not None

    def read(self, member_path: str) -> Optional[bytes]:
        actual = self.locate(member_path)
        if actual is None:
            return None
        try:
            return self._zip.read(actual)
        except (zipfile.BadZipFile, zlib.error, RuntimeError, EOFError, NotImplementedError) as exc:
            # Encrypted, corrupt or unsupported-compression members.
            raise MalformedContainerError(f"Unreadable member {actual}: {exc}") from exc

    @property
    def opf_path(self) -> str:
        if self._opf_path is None:
            self._opf_path = self._opf_path_from_container()
        return self._opf_path

    def _opf_path_from_container(self) -> str:
        raw = self.read(CONTAINER_PATH)
        if raw is None:
            raise MalformedContainerError(f"Missing {CONTAINER_PATH}")
        try:
            root = parse_xml(raw)
        except MalformedPackageError as exc:
            raise MalformedContainerError(f"Unreadable {CONTAINER_PATH}") from exc
        rootfiles = root.first("rootfiles")
        candidates = rootfiles.elements("rootfile") if rootfiles is not None else []
        if not candidates:
            raise MalformedContainerError(f"No rootfile declared in {CONTAINER_PATH}")
        full_path = canonical_member(candidates[0].attr("full-path") or "")
        if not full_path:
            raise MalformedContainerError(f"Missing OPF full-path in {CONTAINER_PATH}")
        return full_path

    def package_document(self) -> XmlElement:
        opf_path = self.opf_path
        raw = self.read(opf_path)
        if raw is None:
            raise MissingOpfError(f"OPF file not found at {opf_path}")
        root = parse_xml(raw)
        if root.tag != "package":
            raise MalformedPackageError(f"Unexpected OPF root <{root.tag}> in {opf_path}")
        return root


def open_archive(data: bytes) -> EpubArchive:
    return EpubArchive(data)


def _manifest_items(manifest: Optional[XmlElement]) -> list[ManifestItem]:
    if manifest is None:
        return []
    items: list[ManifestItem] = []
    for node in manifest.elements("item"):
        href = node.attr("href") or ""
        items.append(
            ManifestItem(
                id=node.attr("id") or "",
                href=href,
                media_type=(node.attr("media-type") or "").lower() or None,
                title=node.attr("title"),
                properties=tuple((node.attr("properties") or "").split()),
            )
        )
    return items


def _spine_itemrefs(spine: Optional[XmlElement]) -> list[SpineItemRef]:
    if spine is None:
        return []
    refs: list[SpineItemRef] = []
    for node in spine.elements("itemref"):
        idref = node.attr("idref")
        if not idref:
            continue
        linear = node.attr("linear")
        refs.append(SpineItemRef(idref=idref, linear=None if linear is None else linear.lower() != "no"))
    return refs


def _resolve_cover(
    archive: EpubArchive, opf_path: str, metadata: XmlElement, manifest: list[ManifestItem]
) -> CoverReference:
    cover_id = None
    for node in metadata.elements("meta"):
        if node.attr("name") == "cover":
            cover_id = node.attr("content")
            break
    if not cover_id:
        raise MissingCoverDeclarationError('Missing <meta name="cover" ...> declaration')

    item = next((candidate for candidate in manifest if candidate.id == cover_id), None)
    if item is None:
        raise CoverItemNotFoundError(f'Cover item "{cover_id}" not found in manifest')
    if not item.href:
        raise CoverItemNotFoundError(f'Cover item "{cover_id}" has no href')

    media_type = item.media_type or guess_image_media_type(item.href)
    if not media_type:
        raise NonImageCoverError(f"Unable to determine cover media type for {item.href}")
    if not media_type.startswith("image/"):
        raise NonImageCoverError(f"Cover media type is not an image ({media_type})")

    member_path = resolve_opf_href(opf_path, item.href)
    if not member_path or not archive.has(member_path):
        raise CoverAssetMissingError(f'Cover asset "{member_path or item.href}" not found in archive')
    return CoverReference(item_id=cover_id, href=item.href, media_type=media_type, member_path=member_path)


def extract_package(archive: EpubArchive) -> PackageModel:
    opf_path = archive.opf_path
    root = archive.package_document()

    metadata = root.first("metadata")
    if metadata is None:
        raise MissingMetadataError("Missing <metadata> section in OPF")

    title_node = metadata.first("title")
    title = title_node.text if title_node is not None else ""
    if not title:
        raise MissingTitleError("Missing <dc:title> value")

    creator = metadata.first("creator")
    author = creator.text if creator is not None and creator.text else None

    manifest = _manifest_items(root.first("manifest"))
    cover = _resolve_cover(archive, opf_path, metadata, manifest)

    spine_node = root.first("spine")
    auxiliary: dict[str, object] = {}
    for section in AUXILIARY_SECTIONS:
        nodes = root.elements(section)
        if not nodes:
            continue
        values = [node.to_data() for node in nodes]
        auxiliary[section] = values[0] if len(values) == 1 else values

    return PackageModel(
        opf_path=opf_path,
        title=title,
        author=author,
        metadata=metadata,
        cover=cover,
        manifest=manifest,
        spine=_spine_itemrefs(spine_node),
        spine_attributes=dict(spine_node.attributes) if spine_node is not None else {},
        auxiliary=auxiliary,
        package_attributes=dict(root.attributes),
    )
