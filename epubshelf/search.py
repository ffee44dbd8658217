from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

from .models import CatalogBook

RECOMMENDATION_LIMIT = 12

GENRE_BASE = 3.0
SUBJECT_BASE = 2.0
SUBJECT_WEIGHT = 0.5
AUTHOR_SCORE = 5.0
LANGUAGE_SCORE = 1.0
PUBLISHER_SCORE = 1.0
KEYWORD_CAP = 2.0


def query_terms(query: str) -> list[str]:
    return (query or "").lower().split()


def search_books(books: Iterable[CatalogBook], query: str) -> list[CatalogBook]:
    """Books whose search text contains every query term as a substring."""
    terms = query_terms(query)
    if not terms:
        return []
    return [book for book in books if all(term in book.search_text for term in terms)]


def filter_books_by_genre(books: Iterable[CatalogBook], label: str) -> list[CatalogBook]:
    wanted = (label or "").lower()
    return [book for book in books if any(genre.lower() == wanted for genre in book.genres)]


def _title_key(book: CatalogBook) -> tuple[str, str]:
    return (book.title.casefold(), book.title)


class LibraryProfile:
    """Frequency maps over the books a reader already owns."""

    def __init__(self, library: Iterable[CatalogBook]) -> None:
        self.genres: Counter[str] = Counter()
        self.subjects: Counter[str] = Counter()
        self.keywords: Counter[str] = Counter()
        self.authors: set[str] = set()
        self.languages: set[str] = set()
        self.publishers: set[str] = set()
        for book in library:
            self.genres.update(book.genres)
            self.subjects.update(book.subjects)
            self.keywords.update(book.keywords)
            self.authors.update(book.authors)
            if book.language:
                self.languages.add(book.language)
            if book.publisher:
                self.publishers.add(book.publisher)

    def score(self, book: CatalogBook) -> float:
        score = 0.0
        for genre in book.genres:
            if self.genres[genre]:
                score += GENRE_BASE + self.genres[genre]
        for subject in book.subjects:
            if self.subjects[subject]:
                score += SUBJECT_BASE + self.subjects[subject] * SUBJECT_WEIGHT
        score += AUTHOR_SCORE * sum(1 for author in book.authors if author in self.authors)
        if book.language and book.language in self.languages:
            score += LANGUAGE_SCORE
        if book.publisher and book.publisher in self.publishers:
            score += PUBLISHER_SCORE
        for keyword in book.keywords:
            if self.keywords[keyword]:
                score += min(KEYWORD_CAP, self.keywords[keyword])
        return score


def recommend_books(
    books: Sequence[CatalogBook], library_ids: Iterable[str], limit: int = RECOMMENDATION_LIMIT
) -> list[CatalogBook]:
    """Rank the books outside the library by overlap with it.

    Scored books come first (highest score, then title); when fewer than
    ``limit`` score above zero the rest is filled alphabetically. An empty
    library gets no recommendations.
    """
    owned = set(library_ids)
    library = [book for book in books if book.id in owned]
    if not library:
        return []

    profile = LibraryProfile(library)
    scored: list[tuple[float, CatalogBook]] = []
    remainder: list[CatalogBook] = []
    for book in books:
        if book.id in owned:
            continue
        score = profile.score(book)
        if score > 0:
            scored.append((score, book))
        else:
            remainder.append(book)

    scored.sort(key=lambda pair: (-pair[0], *_title_key(pair[1])))
    picks = [book for _, book in scored[:limit]]
    if len(picks) < limit:
        picks.extend(sorted(remainder, key=_title_key)[: limit - len(picks)])
    return picks
