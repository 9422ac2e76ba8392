"""Cross-reference extracted places against grounding evidence.

A map link reaches the user only when a grounding citation returned with the same
response corroborates it. Links the model proposed on its own are either generic
(search pages, foreign hosts) and discarded outright, or replaced by the matching
citation's link. Anything uncorroborated is cleared.
"""

import logging
from collections.abc import Sequence
from typing import assert_never

from map_sieve.models import Citation, MapCitation, PlaceRecord, WebCitation
from map_sieve.utils import encode_uri_component, is_generic_map_uri

logger = logging.getLogger(__name__)


def _citation_fields(citation: Citation) -> tuple[str, str]:
    if isinstance(citation, MapCitation | WebCitation):
        return citation.title or "", citation.uri or ""
    assert_never(citation)


def find_matching_citation(name: str, evidence: Sequence[Citation] | None) -> Citation | None:
    """Find the first citation that names a place.

    A citation matches when its title contains the raw name, or its URI contains
    the URI-encoded name. Only plain substring containment is used, so a match is
    never a near-miss guess. Citations without a URI cannot corroborate a link and
    are skipped.

    Args:
        name: The place name.
        evidence: Citations returned with the response, in order.

    Returns:
        The first matching citation, or None.
    """
    if not name or not evidence:
        return None

    encoded_name = encode_uri_component(name)
    for citation in evidence:
        if not isinstance(citation, MapCitation | WebCitation):
            continue
        title, uri = _citation_fields(citation)
        if not uri:
            continue
        if name in title or encoded_name in uri:
            return citation
    return None


def cross_reference(place: PlaceRecord, evidence: Sequence[Citation] | None) -> PlaceRecord:
    """Decide a place's final map link and verification flag.

    Args:
        place: The candidate place, as parsed.
        evidence: Citations returned by the same call that produced the place.

    Returns:
        A copy of the place, with the same id, whose map link is either a
        corroborating citation's URI (verified) or absent (unverified).
    """
    proposed = place.map_uri
    if proposed and is_generic_map_uri(proposed):
        logger.debug(f"Discarding unverifiable map link for '{place.name}': {proposed}")
        return place.model_copy(update={"map_uri": None, "is_verified": False})

    citation = find_matching_citation(place.name, evidence)
    if citation is None:
        return place.model_copy(update={"map_uri": None, "is_verified": False})

    logger.debug(f"Verified '{place.name}' against {citation.kind} citation {citation.uri}")
    return place.model_copy(update={"map_uri": citation.uri, "is_verified": True})


def reconcile(
    places: Sequence[PlaceRecord], evidence: Sequence[Citation] | None
) -> list[PlaceRecord]:
    """Cross-reference every place independently against the same evidence.

    Args:
        places: Candidate places in parser order.
        evidence: Citations returned with the response; may be empty or None.

    Returns:
        The reconciled places, in the same order.
    """
    return [cross_reference(place, evidence) for place in places]
