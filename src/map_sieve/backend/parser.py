"""Recovery parser for structured model responses.

The model is asked for a bare JSON object but routinely wraps it in markdown
fences, adds prose around it, leaves trailing commas, returns a bare array or
stops mid-object. `try_parse_response` walks a fixed chain of recovery stages and
reports which one succeeded; `parse_response` raises `MalformedResponse` when
none does.
"""

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError
from pydantic_core import from_json

from map_sieve.errors import MalformedResponse
from map_sieve.models import AnalysisResult, PlaceRecord
from map_sieve.utils import new_place_id

logger = logging.getLogger(__name__)

BARE_ARRAY_SUMMARY = "Extracted places"

_LEADING_FENCE = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_EXCERPT_LENGTH = 200


class ParseStage(str, Enum):
    """Recovery stages, in the order they are attempted."""

    DIRECT = "direct"
    FENCE_STRIPPED = "fence_stripped"
    BRACE_SLICE = "brace_slice"
    COMMA_REPAIRED = "comma_repaired"
    BARE_ARRAY = "bare_array"
    TRUNCATED = "truncated"


@dataclass(frozen=True)
class ParseSuccess:
    """A response recovered into an analysis result."""

    result: AnalysisResult
    stage: ParseStage


@dataclass(frozen=True)
class ParseFailure:
    """A response that no stage could recover."""

    text: str
    reason: str


ParseOutcome = ParseSuccess | ParseFailure


def strip_fences(text: str) -> str:
    """Remove a leading and a trailing markdown code fence."""
    return _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", text, count=1), count=1).strip()


def remove_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing brace or bracket."""
    return _TRAILING_COMMA.sub(r"\1", text)


def _slice_between(text: str, opening: str, closing: str) -> str | None:
    start = text.find(opening)
    end = text.rfind(closing)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _decode(candidate: str | None) -> Any:
    if candidate is None:
        return None
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None


def _is_array_shaped(text: str) -> bool:
    """Return True when the first bracket in the text opens an array, not an object."""
    array_start = text.find("[")
    object_start = text.find("{")
    return array_start != -1 and (object_start == -1 or array_start < object_start)


def _decode_partial(candidate: str | None) -> Any:
    if candidate is None:
        return None
    try:
        return from_json(candidate, allow_partial=True)
    except ValueError:
        return None


def _stage_payloads(text: str) -> Iterator[tuple[ParseStage, Any]]:
    """Yield the decoded payload each stage produces, lazily and in order."""
    yield ParseStage.DIRECT, _decode(text)

    stripped = strip_fences(text)
    yield ParseStage.FENCE_STRIPPED, _decode(stripped) if stripped != text.strip() else None

    brace_slice = _slice_between(text, "{", "}")
    yield ParseStage.BRACE_SLICE, _decode(brace_slice)

    repaired = remove_trailing_commas(brace_slice) if brace_slice else None
    yield ParseStage.COMMA_REPAIRED, _decode(repaired) if repaired != brace_slice else None

    array = None
    if _is_array_shaped(stripped):
        array_slice = _slice_between(stripped, "[", "]")
        array = _decode(array_slice)
        if not isinstance(array, list) and array_slice:
            array = _decode(remove_trailing_commas(array_slice))
    yield ParseStage.BARE_ARRAY, (
        {"summary": BARE_ARRAY_SUMMARY, "places": array} if isinstance(array, list) else None
    )

    start = text.find("{")
    yield ParseStage.TRUNCATED, _decode_partial(text[start:]) if start != -1 else None


def _build_result(
    payload: Any, id_factory: Callable[[int], str], require_places: bool = False
) -> AnalysisResult | str:
    """Validate a decoded payload; return the result, or the reason it was rejected."""
    if not isinstance(payload, dict):
        return "payload is not an object"
    raw_places = payload.get("places")
    if not isinstance(raw_places, list):
        return "payload has no 'places' list"

    places: list[PlaceRecord] = []
    seen_ids: set[str] = set()
    for index, raw_place in enumerate(raw_places):
        if not isinstance(raw_place, dict):
            logger.warning(f"Skipping place entry {index}: not an object.")
            continue
        try:
            place = PlaceRecord.model_validate(raw_place)
        except ValidationError as exception:
            logger.warning(
                f"Skipping place entry {index}: {exception.error_count()} invalid field(s)."
            )
            continue
        # Verification only ever comes from grounding evidence, never from the text.
        updates: dict[str, Any] = {"is_verified": False}
        if not place.id or place.id in seen_ids:
            updates["id"] = id_factory(index)
        place = place.model_copy(update=updates)
        seen_ids.add(place.id)
        places.append(place)

    if require_places and not places:
        return "no complete place could be recovered"

    try:
        return AnalysisResult(
            summary=payload.get("summary"),
            places=places,
            suggested_itinerary=payload.get("suggestedItinerary"),
        )
    except ValidationError as exception:
        return f"invalid batch fields: {exception.error_count()} error(s)"


def try_parse_response(
    text: str, id_factory: Callable[[int], str] | None = None
) -> ParseOutcome:
    """Recover an analysis result from raw response text.

    Stages are tried in `ParseStage` order and the first one yielding a valid
    batch wins. The same input always succeeds at the same stage.

    Args:
        text: The raw model response.
        id_factory: Builds an id from a place's position for places that lack one.
            Defaults to `new_place_id`.

    Returns:
        ParseSuccess naming the winning stage, or ParseFailure with the last reason.
    """
    if not isinstance(text, str) or not text.strip():
        return ParseFailure(text=text if isinstance(text, str) else "", reason="empty response")

    make_id = id_factory or new_place_id
    reason = "no JSON structure found"
    for stage, payload in _stage_payloads(text):
        if payload is None:
            logger.debug(f"Stage '{stage.value}' produced nothing to decode.")
            continue
        built = _build_result(payload, make_id, require_places=stage is ParseStage.TRUNCATED)
        if isinstance(built, AnalysisResult):
            if stage is not ParseStage.DIRECT:
                logger.info(f"Recovered response at stage '{stage.value}'.")
            return ParseSuccess(result=built, stage=stage)
        reason = f"{stage.value}: {built}"
        logger.debug(f"Stage '{stage.value}' rejected payload: {built}")

    return ParseFailure(text=text, reason=reason)


def parse_response(text: str, id_prefix: str = "place") -> AnalysisResult:
    """Parse raw response text into an analysis result.

    Args:
        text: The raw model response.
        id_prefix: Prefix for ids generated for places that lack one.

    Returns:
        The recovered analysis result.

    Raises:
        MalformedResponse: If no recovery stage succeeds. Carries the original text.
    """
    outcome = try_parse_response(text, lambda index: new_place_id(index, id_prefix))
    if isinstance(outcome, ParseSuccess):
        return outcome.result

    logger.error(
        f"Failed to parse model response ({outcome.reason}): {outcome.text[:_EXCERPT_LENGTH]!r}"
    )
    raise MalformedResponse(outcome.text, f"Malformed model response: {outcome.reason}")
