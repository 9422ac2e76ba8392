"""Utility functions for the map_sieve package."""

import re
import time
import uuid
from typing import Any
from urllib.parse import quote, urlparse

from map_sieve.models import LocationLabel, PlaceRecord

UNCLASSIFIED_REGION = "未分類地區"
UNCLASSIFIED_SUBREGION = "其他"
DEFAULT_SUBREGION = "市區"

# Country names the model sometimes prepends despite being told not to.
_COUNTRY_PREFIX = re.compile(
    r"^(?:台灣|臺灣|日本|南韓|韓國|泰國|越南"
    r"|(?:Taiwan|Japan|South\s+Korea|Korea|Thailand|Vietnam)\b,?)\s*",
    re.IGNORECASE,
)
# "台北市信義區" -> ("台北市", "信義區")
_ADMIN_SUFFIX = re.compile(r"^(.{2,}[市縣都府])(.+)$")

_MAP_PROVIDER_HOST = re.compile(
    r"(?:^|\.)(?:google\.(?:com?\.)?[a-z]{2,3}|goo\.gl|g\.page)$", re.IGNORECASE
)
# Provider hosts also serve docs, mail and so on; only these are map links.
_MAP_HOST_PREFIX = "maps."
_MAP_PATH_PREFIX = "/maps"
_PLACE_PAGE_HOST = "g.page"
_GENERIC_MARKER = "search"

MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query="


def decompose_location(label: Any) -> LocationLabel:
    """Split a free-text "Region Subregion" label into a two-level hierarchy.

    Known country prefixes are dropped first. Whitespace-separated labels split on
    the first token; single-token labels split after a trailing administrative
    suffix character; anything else becomes a region with the generic subregion.
    Never raises.

    Args:
        label: The location guess, normally a string. Anything else counts as empty.

    Returns:
        A (region, subregion) pair. Empty labels map to the unclassified pair.
    """
    if not isinstance(label, str) or not label.strip():
        return LocationLabel(UNCLASSIFIED_REGION, UNCLASSIFIED_SUBREGION)

    cleaned = _COUNTRY_PREFIX.sub("", label.strip(), count=1).strip()
    if not cleaned:
        return LocationLabel(UNCLASSIFIED_REGION, UNCLASSIFIED_SUBREGION)

    parts = cleaned.split()
    if len(parts) >= 2:
        return LocationLabel(parts[0], " ".join(parts[1:]))

    match = _ADMIN_SUFFIX.match(cleaned)
    if match:
        return LocationLabel(match.group(1), match.group(2))

    return LocationLabel(cleaned, DEFAULT_SUBREGION)


def normalize_name(name: str | None) -> str:
    """Case-fold a name and remove all whitespace from it."""
    return "".join((name or "").casefold().split())


def first_location_token(location_guess: str | None) -> str:
    """Return the case-folded first whitespace token of a location guess, or ""."""
    tokens = (location_guess or "").casefold().split()
    return tokens[0] if tokens else ""


def is_map_provider_uri(uri: str | None) -> bool:
    """Check whether a URI points at a recognized map provider.

    Args:
        uri: The candidate link.

    Returns:
        True if the URI has an http(s) scheme, a map-provider host, and either a
        ``maps.`` subdomain, a ``/maps`` path or the place-page short host.
    """
    if not uri:
        return False
    try:
        parsed = urlparse(uri.strip())
    except ValueError:
        return False
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not _MAP_PROVIDER_HOST.search(host):
        return False
    return (
        host == _PLACE_PAGE_HOST
        or host.startswith(_MAP_HOST_PREFIX)
        or parsed.path == _MAP_PATH_PREFIX
        or parsed.path.startswith(_MAP_PATH_PREFIX + "/")
    )


def is_generic_map_uri(uri: str | None) -> bool:
    """Return True for links that cannot identify a single place.

    Search links and links outside a recognized map provider are both generic.
    """
    if not uri:
        return True
    return _GENERIC_MARKER in uri.lower() or not is_map_provider_uri(uri)


def encode_uri_component(value: str) -> str:
    """Percent-encode a value the way browsers encode a URI component."""
    return quote(value, safe="-_.!~*'()")


def build_search_uri(place: PlaceRecord) -> str:
    """Build a map search link for a place that has no verified map link.

    The link is a display fallback and is never stored as the record's map URI.

    Args:
        place: The place to search for.

    Returns:
        A maps search URL querying name, sub-category and location guess.
    """
    query = " ".join(
        part for part in (place.name, place.sub_category, place.location_guess) if part
    ).strip()
    return MAPS_SEARCH_URL + encode_uri_component(query)


def new_place_id(index: int, prefix: str = "place") -> str:
    """Generate an identifier for a place that arrived without one.

    Combines the position in the batch with a millisecond timestamp; the random
    suffix keeps ids unique across batches handled within the same millisecond.
    """
    return f"{prefix}-{index}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
