from __future__ import annotations

import html
import re
from typing import Iterable, Optional

HIERARCHY_DELIMITER = "--"
DEFAULT_GENRE = "General"

WHITESPACE_RE = re.compile(r"\s+")
TRAILING_PUNCT_RE = re.compile(r"[.;]+$")
TAG_RE = re.compile(r"(?s)<[^>]+>")

# Ordered; every label with a matching keyword is kept.
GENRE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Romance", ("romance", "romantic", "love story", "relationship", "rom-com", "heartfelt", "passion")),
    ("Fantasy", ("dragon", "magic", "sorcer", "wizard", "fantasy", "kingdom", "mythical", "spell", "saga")),
    (
        "Science Fiction",
        ("sci-fi", "science fiction", "space", "alien", "future", "futuristic", "time travel", "technology", "cyber"),
    ),
    ("Thriller", ("thriller", "suspense", "tension", "high-stakes", "conspiracy", "chilling", "manhunt")),
    ("Mystery", ("mystery", "detective", "whodunit", "investigation", "murder", "case", "sleuth")),
    ("Action & Adventure", ("action", "adventure", "battle", "rebels", "quest", "explosive", "race against time")),
    ("Historical Fiction", ("historical", "period", "victorian", "era", "century", "wwi", "wwii")),
    ("Non-Fiction", ("non-fiction", "memoir", "biography", "self-help", "guide", "science of", "true story")),
    ("Comedy", ("comedy", "humor", "hilarious", "witty", "funny", "satire")),
    ("Horror", ("horror", "terrifying", "haunted", "nightmare", "bloodcurdling", "vampire", "werewolf", "monster")),
    ("Young Adult", ("young adult", "ya", "teen", "coming-of-age", "high school")),
    ("Drama", ("drama", "family", "emotional", "intimate", "character-driven")),
)


def collapse_whitespace(value: Optional[str]) -> str:
    return WHITESPACE_RE.sub(" ", value or "").strip()


def clean_label(value: Optional[str]) -> Optional[str]:
    cleaned = TRAILING_PUNCT_RE.sub("", collapse_whitespace(value)).strip()
    return cleaned or None


def unique_strings(values: Iterable[Optional[str]]) -> list[str]:
    """Drop empties and case-insensitive duplicates, keeping the first spelling."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if not value:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def strip_html(value: Optional[str]) -> str:
    if not value:
        return ""
    return html.unescape(TAG_RE.sub(" ", value))


def infer_genres(*texts: Optional[str]) -> list[str]:
    haystack = " \n ".join(text for text in texts if text).lower()
    matched = [
        label
        for label, keywords in GENRE_KEYWORDS
        if haystack and any(keyword in haystack for keyword in keywords)
    ]
    return matched or [DEFAULT_GENRE]


def primary_genres(subjects: Iterable[str]) -> list[str]:
    return unique_strings(
        clean_label(subject.split(HIERARCHY_DELIMITER, 1)[0]) or clean_label(subject) for subject in subjects
    )


def derive_genres(
    subjects: Iterable[str],
    description: Optional[str] = None,
    publisher: Optional[str] = None,
    title: Optional[str] = None,
) -> list[str]:
    genres = primary_genres(subjects)
    if genres:
        return genres
    return infer_genres(strip_html(description), publisher, title)
