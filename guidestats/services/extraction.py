"""Stats extraction from a rendered Local Guide profile.

Two independent sources feed one record:

  * panel rows  - label/value pairs read from the stats overlay once it has
                  been opened. Precise, but only present when the overlay
                  actually renders.
  * body text   - regex matching over the page's visible text. Loose, but
                  always available once the page has hydrated. It is the
                  only source for level and points.

``merge_counts`` combines them: text wins for level/points, the panel wins
for every other field whenever it produced a non-zero value.

Everything here is pure; the session driver does the browser work.
"""

import re
from typing import Iterable, Mapping

from guidestats.config import settings
from guidestats.schemas.stats import COUNT_FIELDS, TEXT_ONLY_FIELDS

_NUM = r"(\d[\d,\.]*)"

# How far (in characters) a label may sit from the number it describes
PROXIMITY_WINDOW = 120
LEVEL_WINDOW = 200

LEVEL_RE = re.compile(
    rf"Local Guide[^\n]{{0,{LEVEL_WINDOW}}}?(?:[•·]\s*)?Level\s*(\d+)",
    re.IGNORECASE,
)
POINTS_LABEL = r"points?|pts"

# Field -> label patterns matched against body text. Several patterns for a
# field are combined with max().
TEXT_LABELS: dict[str, tuple[str, ...]] = {
    "reviews": (r"reviews?",),
    "ratings": (r"ratings?",),
    "photos": (r"photos?",),
    "edits": (r"edits?",),
    "questions": (r"answers?",),
    "facts": (r"reported\s+incorrect", r"facts?\s*checked"),
    "roads_added": (r"roads?\s+added",),
    "places_added": (r"places?\s+added",),
    "lists_published": (r"lists?\s+published",),
}

NAME_SCAN_LINES = 50
NAME_BOILERPLATE = (
    "local guide",
    "google",
    "sign in",
    "before you",
    "contributions",
    "level",
    "points",
    "reviews",
    "photos",
    "see all",
    "learn more",
    "terms",
    "privacy",
)


def parse_count(value) -> int:
    """'1,234' -> 1234. Anything without digits -> 0."""
    if value is None:
        return 0
    digits = re.sub(r"\D", "", str(value))
    return int(digits) if digits else 0


# ---------------------------------------------------------------------------
# Structured (panel) extraction
# ---------------------------------------------------------------------------


def normalize_label(label) -> str:
    return " ".join(str(label or "").split()).lower()


def extract_panel_counts(
    rows: Iterable[Mapping], label_map: Mapping[str, str] | None = None
) -> dict[str, int]:
    """Map stats-panel rows to count fields.

    Each row is a mapping with ``label`` and ``value`` text. Unknown labels
    (videos, captions, q&a, ...) are skipped.
    """
    if label_map is None:
        label_map = settings.PANEL_LABEL_MAP
    out = dict.fromkeys(COUNT_FIELDS, 0)
    for row in rows:
        field = label_map.get(normalize_label(row.get("label")))
        if field not in out:
            continue
        out[field] = max(out[field], parse_count(row.get("value")))
    return out


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


def near_count(
    text: str, label: str, window: int = PROXIMITY_WINDOW, gap: str = r"\s+"
) -> int:
    """Number right before ``label``, else the first number shortly after it.

    The label must start a word, so "edits" never matches inside "credits".
    """
    before = re.search(rf"{_NUM}{gap}(?<![a-z])(?:{label})\b", text, re.IGNORECASE)
    if before:
        return parse_count(before.group(1))
    after = re.search(
        rf"(?<![a-z])(?:{label})[\s\S]{{0,{window}}}?{_NUM}", text, re.IGNORECASE
    )
    if after:
        return parse_count(after.group(1))
    return 0


def extract_level(text: str) -> int:
    m = LEVEL_RE.search(text)
    return parse_count(m.group(1)) if m else 0


def extract_text_counts(text: str) -> dict[str, int]:
    """Best-effort level, points and counts from visible body text."""
    text = text or ""
    out = {
        "level": extract_level(text),
        "points": near_count(text, POINTS_LABEL, gap=r"\s*"),
    }
    for field, labels in TEXT_LABELS.items():
        out[field] = max(near_count(text, label) for label in labels)
    return out


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_counts(structured: Mapping[str, int], text: Mapping[str, int]) -> dict[str, int]:
    merged = {f: text.get(f, 0) or 0 for f in TEXT_ONLY_FIELDS}
    for field in COUNT_FIELDS:
        merged[field] = structured.get(field) or text.get(field) or 0
    return merged


# ---------------------------------------------------------------------------
# Display name heuristic
# ---------------------------------------------------------------------------


def is_boilerplate(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in NAME_BOILERPLATE)


def _is_capitalized_word(word: str) -> bool:
    bare = word.replace("-", "").replace("'", "").replace(".", "")
    return bool(bare) and bare.isalpha() and word[0].isupper()


def guess_display_name(text: str, max_lines: int = NAME_SCAN_LINES) -> str | None:
    """First line among the top ``max_lines`` that reads like a person's name.

    A name here is two or three capitalized words with nothing else on the
    line, and none of the page chrome phrases.
    """
    for line in (text or "").splitlines()[:max_lines]:
        words = line.split()
        if not 2 <= len(words) <= 3:
            continue
        candidate = " ".join(words)
        if is_boilerplate(candidate):
            continue
        if all(_is_capitalized_word(w) for w in words):
            return candidate
    return None
