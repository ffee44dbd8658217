from __future__ import annotations

from html import escape
import io
import posixpath
from pathlib import Path
from typing import Optional, Sequence
import zipfile

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 17
FIXED_DATE = (2020, 1, 1, 0, 0, 0)

DEFAULT_CHAPTERS = (
    ("c1", "Text/ch1.xhtml", "<h1>Chapter One</h1><p>The dragon woke.</p>"),
    ("c2", "Text/ch2.xhtml", "<h1>Chapter Two</h1><p>The kingdom burned.</p>"),
    ("c3", "Text/ch3.xhtml", "<h1>Chapter Three</h1><p>Morning came.</p>"),
)


def chapter_xhtml(body: str, head_title: str = "Chapter") -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>"
        "<html xmlns=\"http://www.w3.org/1999/xhtml\">"
        f"<head><title>{head_title}</title><style>p {{ margin: 0; }}</style></head>"
        f"<body>{body}</body></html>"
    )


def container_xml(opf_path: Optional[str]) -> str:
    rootfiles = ""
    if opf_path is not None:
        rootfiles = f"<rootfile full-path=\"{opf_path}\" media-type=\"application/oebps-package+xml\"/>"
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<container version=\"1.0\" xmlns=\"urn:oasis:names:tc:opendocument:xmlns:container\">"
        f"<rootfiles>{rootfiles}</rootfiles></container>"
    )


def package_opf(
    *,
    title: Optional[str] = "The Dragon Road",
    author: Optional[str] = "Ada Writer",
    subjects: Sequence[str] = (),
    description: Optional[str] = None,
    publisher: Optional[str] = None,
    language: Optional[str] = "en",
    identifier: str = "urn:uuid:0000-fixture",
    chapters: Sequence[tuple] = DEFAULT_CHAPTERS,
    spine: Optional[Sequence[str]] = None,
    cover_id: Optional[str] = "cover-img",
    cover_item_id: str = "cover-img",
    cover_href: Optional[str] = "images/cover.png",
    cover_media_type: Optional[str] = "image/png",
    metadata: bool = True,
    extra_metadata: str = "",
    extra_package: str = "",
) -> str:
    meta_parts = [f"<dc:identifier id=\"BookId\">{escape(identifier)}</dc:identifier>"]
    if title is not None:
        meta_parts.append(f"<dc:title>{escape(title)}</dc:title>")
    if author is not None:
        meta_parts.append(f"<dc:creator>{escape(author)}</dc:creator>")
    if language is not None:
        meta_parts.append(f"<dc:language>{language}</dc:language>")
    meta_parts.extend(f"<dc:subject>{escape(subject)}</dc:subject>" for subject in subjects)
    if description is not None:
        meta_parts.append(f"<dc:description>{escape(description)}</dc:description>")
    if publisher is not None:
        meta_parts.append(f"<dc:publisher>{escape(publisher)}</dc:publisher>")
    if cover_id is not None:
        meta_parts.append(f"<meta name=\"cover\" content=\"{cover_id}\"/>")
    meta_parts.append(extra_metadata)

    items = []
    for chapter in chapters:
        item_id, href = chapter[0], chapter[1]
        item_title = chapter[3] if len(chapter) > 3 and chapter[3] else None
        title_attr = f" title=\"{escape(item_title)}\"" if item_title else ""
        items.append(f"<item id=\"{item_id}\" href=\"{href}\" media-type=\"application/xhtml+xml\"{title_attr}/>")
    if cover_href is not None:
        media_attr = f" media-type=\"{cover_media_type}\"" if cover_media_type else ""
        items.append(f"<item id=\"{cover_item_id}\" href=\"{cover_href}\"{media_attr} properties=\"cover-image\"/>")

    idrefs = spine if spine is not None else [chapter[0] for chapter in chapters]
    itemrefs = "".join(f"<itemref idref=\"{idref}\"/>" for idref in idrefs)

    metadata_xml = ""
    if metadata:
        metadata_xml = (
            "<metadata xmlns:dc=\"http://purl.org/dc/elements/1.1/\" xmlns:opf=\"http://www.idpf.org/2007/opf\">"
            + "".join(meta_parts)
            + "</metadata>"
        )
    return (
        "<?xml version=\"1.0\" encoding=\"utf-8\"?>"
        "<package xmlns=\"http://www.idpf.org/2007/opf\" unique-identifier=\"BookId\" version=\"3.0\">"
        f"{metadata_xml}"
        f"<manifest>{''.join(items)}</manifest>"
        f"<spine toc=\"ncx\">{itemrefs}</spine>"
        f"{extra_package}"
        "</package>"
    )


def _writestr(zf: zipfile.ZipFile, name: str, data: object) -> None:
    info = zipfile.ZipInfo(name, date_time=FIXED_DATE)
    info.compress_type = zipfile.ZIP_STORED if name == "mimetype" else zipfile.ZIP_DEFLATED
    zf.writestr(info, data)


def build_epub_bytes(
    *,
    opf_path: str = "OEBPS/content.opf",
    container: bool = True,
    declare_rootfile: bool = True,
    include_opf: bool = True,
    include_cover: bool = True,
    cover_bytes: bytes = PNG_BYTES,
    chapter_bodies: Optional[dict[str, str]] = None,
    opf_text: Optional[str] = None,
    **opf_options: object,
) -> bytes:
    """Build a small EPUB in memory with fixed timestamps so bytes are reproducible.

    ``chapter_bodies`` maps chapter ids to replacement body markup; a chapter
    mapped to ``None`` is left out of the archive.
    """
    chapters = opf_options.get("chapters", DEFAULT_CHAPTERS)
    opf_dir = posixpath.dirname(opf_path)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        _writestr(zf, "mimetype", b"application/epub+zip")
        if container:
            _writestr(zf, "META-INF/container.xml", container_xml(opf_path if declare_rootfile else None))
        if include_opf:
            _writestr(zf, opf_path, opf_text if opf_text is not None else package_opf(**opf_options))
        for chapter in chapters:
            body = chapter[2]
            if chapter_bodies is not None and chapter[0] in chapter_bodies:
                body = chapter_bodies[chapter[0]]
            if body is None:
                continue
            _writestr(zf, posixpath.join(opf_dir, chapter[1]), chapter_xhtml(body))
        cover_href = opf_options.get("cover_href", "images/cover.png")
        if include_cover and cover_href:
            _writestr(zf, posixpath.normpath(posixpath.join(opf_dir, cover_href)), cover_bytes)
    return buffer.getvalue()


def write_epub(path: Path, **options: object) -> bytes:
    data = build_epub_bytes(**options)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return data


def damage_member(data: bytes, name: str, *, encrypted: bool = False, bad_crc: bool = False) -> bytes:
    """Rewrite the central-directory record of ``name`` so reading it fails.

    ``encrypted`` sets the encryption flag bit; ``bad_crc`` flips the stored
    CRC-32 so decompression ends in a checksum mismatch.
    """
    buffer = bytearray(data)
    target = name.encode("utf-8")
    offset = buffer.find(b"PK\x01\x02")
    while offset != -1:
        name_length = int.from_bytes(buffer[offset + 28:offset + 30], "little")
        if bytes(buffer[offset + 46:offset + 46 + name_length]) == target:
            if encrypted:
                flags = int.from_bytes(buffer[offset + 8:offset + 10], "little") | 0x1
                buffer[offset + 8:offset + 10] = flags.to_bytes(2, "little")
            if bad_crc:
                crc = int.from_bytes(buffer[offset + 16:offset + 20], "little") ^ 0xFFFFFFFF
                buffer[offset + 16:offset + 20] = crc.to_bytes(4, "little")
            return bytes(buffer)
        offset = buffer.find(b"PK\x01\x02", offset + 4)
    raise KeyError(name)
