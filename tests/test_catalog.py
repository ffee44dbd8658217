import tempfile
import unittest
from pathlib import Path

from epubshelf.catalog import Catalog, metadata_field, node_text, normalize_entry, top_genres
from epubshelf.manifest import write_manifest
from epubshelf.models import FileInfo, ManifestEntry


def _entry(book_id: str, title: str, **metadata) -> ManifestEntry:
    return ManifestEntry(
        id=book_id,
        content_hash=book_id,
        title=title,
        metadata={"title": title, **metadata},
        paths={"opf": "OEBPS/content.opf", "epub": f"assets/epubs/{book_id}.epub"},
        file=FileInfo(name=f"{book_id}.epub", size=10),
    )


class NormalizeEntryTests(unittest.TestCase):
    def test_full_normalization(self) -> None:
        entry = _entry(
            "h1",
            "  The   Long Night. ",
            creator=["Ada Writer", {"id": "c2", "#text": "ada writer"}, "Bo Second"],
            contributor="Cy Editor",
            subject=["Fiction -- Fantasy", "fiction -- fantasy", "Dragons;"],
            identifier={"id": "BookId", "#text": "urn:isbn:9780000000001"},
            description="<p>A quiet tale.</p>",
            language="en",
            publisher="North Press",
            date="2001-02-03",
            rights="CC-BY",
        )
        book = normalize_entry(entry)
        self.assertEqual(book.id, "h1")
        self.assertEqual(book.title, "The Long Night")
        self.assertEqual(book.authors, ("Ada Writer", "Bo Second"))
        self.assertEqual(book.author, "Ada Writer")
        self.assertEqual(book.contributors, ("Cy Editor",))
        self.assertEqual(book.subjects, ("Fiction -- Fantasy", "Dragons"))
        self.assertEqual(book.genres, ("Fiction", "Dragons"))
        self.assertEqual(book.identifiers, ("urn:isbn:9780000000001",))
        self.assertEqual(book.summary, "<p>A quiet tale.</p>")
        self.assertEqual(
            (book.language, book.publisher, book.published, book.rights),
            ("en", "North Press", "2001-02-03", "CC-BY"),
        )
        self.assertEqual(
            book.keywords,
            ("Fiction -- Fantasy", "Dragons", "Fiction", "urn:isbn:9780000000001", "Ada Writer", "Bo Second", "Cy Editor"),
        )

    def test_search_text_covers_visible_fields(self) -> None:
        book = normalize_entry(
            _entry("h1", "Dragon  King", creator="Mary  Shelley", subject="Gothic -- Horror")
        )
        for token in ("dragon king", "mary shelley", "gothic", "h1.epub"):
            self.assertIn(token, book.search_text)
        self.assertEqual(book.search_text, book.search_text.lower())
        self.assertNotIn("  ", book.search_text)

    def test_meta_fallbacks_follow_priority_table(self) -> None:
        metadata = {
            "meta": [
                {"name": "cover", "content": "cover-img"},
                {"property": "dcterms:description", "#text": "From meta."},
                {"property": "schema:description", "#text": "Ignored."},
                {"name": "publicationDate", "content": "1999"},
            ]
        }
        self.assertEqual(metadata_field(metadata, "summary"), "From meta.")
        self.assertEqual(metadata_field(metadata, "published"), "1999")
        self.assertIsNone(metadata_field(metadata, "rights"))
        self.assertEqual(metadata_field({"description": "Direct", **metadata}, "summary"), "Direct")

    def test_node_text(self) -> None:
        self.assertEqual(node_text("  value "), "value")
        self.assertIsNone(node_text("   "))
        self.assertEqual(node_text({"content": "meta value"}), "meta value")
        self.assertIsNone(node_text({"id": 3}))

    def test_genres_are_inferred_without_subjects(self) -> None:
        book = normalize_entry(_entry("h1", "Cold Case", description="A detective returns."))
        self.assertEqual(book.genres, ("Mystery",))
        bare = normalize_entry(_entry("h2", "Xyzzy"))
        self.assertEqual(bare.genres, ("General",))

    def test_missing_title_and_id_fallbacks(self) -> None:
        entry = ManifestEntry(id="", content_hash="", title="   ", paths={"epub": "assets/epubs/x.epub"})
        book = normalize_entry(entry)
        self.assertEqual(book.title, "Untitled")
        self.assertEqual(book.id, "assets/epubs/x.epub")
        self.assertEqual(book.content_hash, "assets/epubs/x.epub")


class GenreIndexTests(unittest.TestCase):
    def test_threshold_and_order(self) -> None:
        catalog = Catalog.from_entries(
            [
                _entry("a", "A", subject=["Horror", "Poetry"]),
                _entry("b", "B", subject=["horror", "Drama"]),
                _entry("c", "C", subject=["Drama", "Horror"]),
                _entry("d", "D", subject=["Solo"]),
            ]
        )
        self.assertEqual(catalog.genres, ["Horror", "Drama"])

    def test_index_is_capped(self) -> None:
        entries = []
        for index in range(30):
            label = f"Genre {index:02d}"
            entries.append(_entry(f"x{index}", f"X{index}", subject=label))
            entries.append(_entry(f"y{index}", f"Y{index}", subject=label))
        genres = top_genres(normalize_entry(entry) for entry in entries)
        self.assertEqual(len(genres), 24)
        self.assertEqual(genres[0], "Genre 00")


class CatalogTests(unittest.TestCase):
    def test_sorted_by_title_with_lookups(self) -> None:
        catalog = Catalog.from_entries(
            [
                _entry("h2", "banana"),
                _entry("h1", "Apple"),
                _entry("h3", "cherry"),
                _entry("h1", "Apple duplicate"),
            ]
        )
        self.assertEqual([book.title for book in catalog], ["Apple", "banana", "cherry"])
        self.assertEqual(len(catalog), 3)
        self.assertEqual(catalog.get_book_by_id("h3").title, "cherry")
        self.assertEqual(catalog.get_book_by_hash("h2").title, "banana")
        self.assertIsNone(catalog.get_book_by_id("missing"))

    def test_independent_catalogs(self) -> None:
        first = Catalog.from_entries([_entry("h1", "One")])
        second = Catalog.from_entries([_entry("h2", "Two")])
        self.assertIsNone(first.get_book_by_id("h2"))
        self.assertIsNone(second.get_book_by_id("h1"))

    def test_load_from_manifest_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "epub-manifest.json"
            write_manifest(path, [_entry("h1", "Saved Book", creator="Ada Writer")])
            catalog = Catalog.load(path)
        book = catalog.get_book_by_id("h1")
        self.assertEqual(book.title, "Saved Book")
        self.assertEqual(book.authors, ("Ada Writer",))
        self.assertEqual(catalog.search("saved ada"), [book])


if __name__ == "__main__":
    unittest.main()
