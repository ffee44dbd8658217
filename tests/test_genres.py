import unittest

from epubshelf.genres import (
    DEFAULT_GENRE,
    clean_label,
    derive_genres,
    infer_genres,
    primary_genres,
    strip_html,
    unique_strings,
)


class LabelTests(unittest.TestCase):
    def test_clean_label(self) -> None:
        self.assertEqual(clean_label("  Science   Fiction. "), "Science Fiction")
        self.assertEqual(clean_label("History;;"), "History")
        self.assertIsNone(clean_label(" .; "))
        self.assertIsNone(clean_label(None))

    def test_unique_strings_keeps_first_casing(self) -> None:
        self.assertEqual(unique_strings(["Fantasy", "fantasy", None, "", "Horror", "FANTASY"]), ["Fantasy", "Horror"])

    def test_strip_html(self) -> None:
        self.assertEqual(strip_html("<p>Dragons &amp; kings</p>").strip(), "Dragons & kings")


class GenreDerivationTests(unittest.TestCase):
    def test_primary_segment_of_hierarchical_subject(self) -> None:
        self.assertEqual(derive_genres(["Fiction -- Romance -- Historical"]), ["Fiction"])

    def test_primary_genres_deduplicate_case_insensitively(self) -> None:
        subjects = ["Fiction -- Fantasy", "fiction -- Horror", "Poetry."]
        self.assertEqual(primary_genres(subjects), ["Fiction", "Poetry"])

    def test_keyword_inference_without_subjects(self) -> None:
        genres = derive_genres([], description="<p>A dragon threatens the kingdom.</p>")
        self.assertIn("Fantasy", genres)

    def test_keyword_inference_includes_every_match(self) -> None:
        genres = infer_genres("A haunted detective story", None, None)
        self.assertEqual(genres, ["Mystery", "Horror"])

    def test_catch_all_default(self) -> None:
        self.assertEqual(derive_genres([], description=None, publisher=None, title="Xyzzy"), [DEFAULT_GENRE])
        self.assertEqual(infer_genres(), [DEFAULT_GENRE])

    def test_publisher_and_title_are_searched(self) -> None:
        self.assertIn("Comedy", derive_genres([], publisher="Satire House", title="Untold"))


if __name__ == "__main__":
    unittest.main()
