"""Identity-preserving deduplication of place records.

Places are matched on a verified map link first and on a name/location key
otherwise. When two records describe the same place, the verified one wins, then
the more complete one; the surviving record always takes the id that was seen
first, so references held by the UI stay valid across re-analysis.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from map_sieve.models import AnalysisResult, PlaceRecord
from map_sieve.utils import first_location_token, is_generic_map_uri, new_place_id, normalize_name

logger = logging.getLogger(__name__)

_COORDINATES_SCORE = 2.0
_ADDRESS_SCORE = 1.0
_IMAGE_SCORE = 1.0
_DESCRIPTION_SCORE = 0.5


def uri_key(place: PlaceRecord) -> str | None:
    """Return the verified, place-specific map link of a record, if it has one."""
    if place.is_verified and place.map_uri and not is_generic_map_uri(place.map_uri):
        return place.map_uri
    return None


def name_key(place: PlaceRecord) -> str:
    """Return the normalized name joined with the first token of the location guess.

    The location token separates same-named branches in different cities.
    """
    return f"{normalize_name(place.name)}|{first_location_token(place.location_guess)}"


def dedup_keys(place: PlaceRecord) -> tuple[str | None, str]:
    """Return the (map link, name) identity keys of a record."""
    return uri_key(place), name_key(place)


def completeness_scores(first: PlaceRecord, second: PlaceRecord) -> tuple[float, float]:
    """Score how much useful data two competing records carry.

    Coordinates count 2, an address 1, an image 1, and the strictly longer
    description 0.5.

    Args:
        first: One of the records.
        second: The other record.

    Returns:
        The scores of `first` and `second`, in that order.
    """
    scores = []
    for place in (first, second):
        score = 0.0
        if place.has_coordinates:
            score += _COORDINATES_SCORE
        if place.address:
            score += _ADDRESS_SCORE
        if place.image_uri:
            score += _IMAGE_SCORE
        scores.append(score)

    if len(first.description) > len(second.description):
        scores[0] += _DESCRIPTION_SCORE
    elif len(second.description) > len(first.description):
        scores[1] += _DESCRIPTION_SCORE
    return scores[0], scores[1]


def merge_pair(existing: PlaceRecord, incoming: PlaceRecord) -> PlaceRecord:
    """Merge two records that describe the same place.

    Args:
        existing: The record seen first; its id survives.
        incoming: The record seen later.

    Returns:
        The winning record's fields carrying `existing`'s id.
    """
    if existing.is_verified != incoming.is_verified:
        incoming_wins = incoming.is_verified
    else:
        existing_score, incoming_score = completeness_scores(existing, incoming)
        incoming_wins = incoming_score > existing_score

    if not incoming_wins:
        return existing
    logger.debug(f"Merging '{incoming.name}' ({incoming.id}) into id {existing.id}")
    return incoming.model_copy(update={"id": existing.id})


@dataclass
class _Group:
    """A surviving record plus every identity key it has absorbed so far."""

    place: PlaceRecord
    uris: set[str] = field(default_factory=set)
    names: set[str] = field(default_factory=set)

    @classmethod
    def of(cls, place: PlaceRecord) -> "_Group":
        place_uri, place_name = dedup_keys(place)
        return cls(place, {place_uri} if place_uri else set(), {place_name})

    def absorb(self, other: "_Group") -> None:
        self.place = merge_pair(self.place, other.place)
        self.uris |= other.uris
        self.names |= other.names


class _Catalogue:
    """Groups of distinct places plus the key indexes pointing into them."""

    def __init__(self) -> None:
        self.groups: list[_Group] = []
        self.by_uri: dict[str, int] = {}
        self.by_name: dict[str, list[int]] = {}
        self.ids: dict[str, int] = {}
        self.merges = 0

    def find(self, group: _Group) -> int | None:
        for group_uri in sorted(group.uris):
            if group_uri in self.by_uri:
                return self.by_uri[group_uri]

        place_uri, place_name = dedup_keys(group.place)
        for group_name in [place_name, *sorted(group.names - {place_name})]:
            for slot in self.by_name.get(group_name, []):
                slot_uri = uri_key(self.groups[slot].place)
                # Two different verified links are two different places.
                if place_uri and slot_uri and place_uri != slot_uri:
                    continue
                return slot
        return None

    def register(self, group: _Group, slot: int) -> None:
        for group_uri in group.uris:
            self.by_uri.setdefault(group_uri, slot)
        for group_name in group.names:
            slots = self.by_name.setdefault(group_name, [])
            if slot not in slots:
                slots.append(slot)

    def add(self, group: _Group) -> None:
        slot = self.find(group)
        if slot is None:
            if group.place.id in self.ids:
                fresh_id = new_place_id(len(self.groups))
                logger.warning(
                    f"Id '{group.place.id}' is already taken; reassigning to '{fresh_id}'."
                )
                group.place = group.place.model_copy(update={"id": fresh_id})
            slot = len(self.groups)
            self.groups.append(group)
            self.ids[group.place.id] = slot
            self.register(group, slot)
            return

        self.groups[slot].absorb(group)
        self.merges += 1
        self.register(self.groups[slot], slot)


def _single_pass(groups: Sequence[_Group]) -> tuple[list[_Group], int]:
    catalogue = _Catalogue()
    for group in groups:
        catalogue.add(group)
    return catalogue.groups, catalogue.merges


def deduplicate(places: Sequence[PlaceRecord] | None) -> list[PlaceRecord]:
    """Collapse records describing the same real-world place into one.

    First-seen places keep their position and id; places with new keys are
    appended in order. Every key a merged record brought along stays attached to
    the surviving record, and passes repeat until one merges nothing, so the
    number of survivors does not depend on input order and deduplicating the
    result again changes nothing. Never raises.

    Args:
        places: Records from one or more batches, oldest first.

    Returns:
        One record per distinct place.
    """
    current = [_Group.of(place) for place in places or []]
    total_merges = 0
    while True:
        current, merges = _single_pass(current)
        total_merges += merges
        if merges == 0:
            break

    if total_merges:
        logger.info(f"Deduplicated {len(places or [])} places into {len(current)}.")
    return [group.place for group in current]


def merge_results(existing: AnalysisResult | None, incoming: AnalysisResult) -> AnalysisResult:
    """Append a new batch to an existing catalogue.

    Args:
        existing: The current catalogue, or None when there is none yet.
        incoming: The newly extracted batch.

    Returns:
        A new batch whose places are the deduplicated union, existing places first.
        The existing summary and itinerary are kept when present.
    """
    if existing is None:
        return incoming.model_copy(update={"places": deduplicate(incoming.places)})

    return AnalysisResult(
        summary=existing.summary or incoming.summary,
        places=deduplicate([*existing.places, *incoming.places]),
        suggested_itinerary=existing.suggested_itinerary or incoming.suggested_itinerary,
    )
