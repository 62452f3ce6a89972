"""Profile identifier normalization and candidate URL generation.

Accepted input:
  - a raw contributor id (10+ digits)          '123456789012'
  - any URL containing the contrib path segment 'https://www.google.com/maps/contrib/123.../reviews/'
    followed by an id of the same 10+ digit shape

Both resolve to the canonical landing page
``https://www.google.com/maps/contrib/<id>``.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlencode

from guidestats.core.exceptions import InvalidIdentifierError

CONTRIB_BASE_URL = "https://www.google.com/maps/contrib/"
CONTRIB_PATH_SEGMENT = "google.com/maps/contrib/"

# Sub-path that renders the same profile inside the reviews shell
ALT_SHELL_SUBPATH = "/reviews"

# Forces English/US rendering, which is much less likely to hit a consent wall
LOCALE_PARAMS = {"hl": "en", "gl": "us", "authuser": "0"}

_RAW_ID_RE = re.compile(r"^\d{10,}$")
# Ids inside URLs follow the raw-id rule: 10 or more digits
_URL_ID_RE = re.compile(re.escape(CONTRIB_PATH_SEGMENT) + r"(\d{10,})(?=[/?#]|$)")


@dataclass(frozen=True)
class ProfileIdentifier:
    contrib_id: str

    @property
    def url(self) -> str:
        return f"{CONTRIB_BASE_URL}{self.contrib_id}"

    def __str__(self) -> str:
        return self.url


def normalize_identifier(raw: str | None) -> ProfileIdentifier:
    """Turn user input into a ProfileIdentifier.

    Raises InvalidIdentifierError for anything that is neither a long numeric
    id nor a URL carrying the contrib path segment.
    """
    value = str(raw or "").strip()
    if not value:
        raise InvalidIdentifierError()

    if _RAW_ID_RE.match(value):
        return ProfileIdentifier(contrib_id=value)

    if CONTRIB_PATH_SEGMENT in value:
        m = _URL_ID_RE.search(value.rstrip("/"))
        if m:
            return ProfileIdentifier(contrib_id=m.group(1))

    raise InvalidIdentifierError()


def candidate_urls(identifier: ProfileIdentifier) -> list[str]:
    """Ordered URL variants for one profile, highest priority first.

    Locale-qualified variants lead because they avoid most consent walls;
    the bare URLs remain as lower-priority fallbacks.
    """
    query = urlencode(LOCALE_PARAMS)
    base = identifier.url
    alt = f"{base}{ALT_SHELL_SUBPATH}"
    return [
        f"{base}?{query}",
        f"{alt}?{query}",
        base,
        alt,
    ]
