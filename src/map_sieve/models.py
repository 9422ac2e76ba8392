"""Pydantic models for the map_sieve package.

This module defines the data models shared by the extraction pipeline: the place
records produced from a model response, the batch that groups them, and the
grounding citations returned alongside a response. Wire names are camelCase, as
the language model emits them; Python attribute names are snake_case and both
are accepted on input.
"""

import logging
import math
from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_RATING = 3.0


class CategoryType(str, Enum):
    """Top-level category of a place."""

    FOOD = "FOOD"
    DRINK = "DRINK"
    SIGHTSEEING = "SIGHTSEEING"
    SHOPPING = "SHOPPING"
    ACTIVITY = "ACTIVITY"
    LODGING = "LODGING"
    OTHER = "OTHER"


class PriceLevel(str, Enum):
    """Relative price band of a place."""

    FREE = "Free"
    CHEAP = "$"
    MODERATE = "$$"
    EXPENSIVE = "$$$"
    LUXURY = "$$$$"
    UNKNOWN = "Unknown"


class Coordinates(BaseModel):
    """A finite latitude/longitude pair.

    Attributes:
        lat: Latitude (-90.0 to 90.0).
        lng: Longitude (-180.0 to 180.0).
    """

    lat: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False, description="Latitude.")
    lng: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False, description="Longitude.")

    @property
    def is_valid(self) -> bool:
        """Re-check range and finiteness, for instances built without validation."""
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )


class LocationLabel(NamedTuple):
    """Two-level grouping derived from a free-text location guess."""

    region: str
    subregion: str


class PlaceRecord(BaseModel):
    """Represents a single point of interest extracted from travel content.

    Attributes:
        id: Stable opaque identifier, assigned once and kept across merges.
        name: Specific name of the place.
        original_text: The fragment of user input the place was identified from.
        category: Top-level category.
        sub_category: Free-text refinement of the category (e.g. "Ramen Shop").
        description: Short description of why the place is recommended.
        rating_prediction: Estimated rating (1-5).
        price_level: Relative price band.
        tags: Descriptive tags; order is irrelevant for identity.
        location_guess: Free-text "Region Subregion" label.
        address: Full address, when known.
        opening_hours: Opening hours text, when known.
        coordinates: Latitude/longitude, absent when unknown or invalid.
        map_uri: Map link corroborated by grounding evidence.
        is_verified: True only when map_uri was corroborated by grounding evidence.
        image_uri: URL of an image representing the place.
        website_uri: Official website or source article link.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(default="", description="Stable opaque identifier.")
    name: str = Field(..., min_length=1, description="Specific name of the place.")
    original_text: str = Field(default="", description="Source fragment of user input.")
    category: CategoryType = Field(default=CategoryType.OTHER)
    sub_category: str = Field(default="")
    description: str = Field(default="")
    rating_prediction: float = Field(default=DEFAULT_RATING, ge=1.0, le=5.0)
    price_level: PriceLevel = Field(default=PriceLevel.UNKNOWN)
    tags: list[str] = Field(default_factory=list)
    location_guess: str = Field(default="", description="Free-text 'Region Subregion' label.")
    address: str | None = None
    opening_hours: str | None = None
    coordinates: Coordinates | None = None
    map_uri: str | None = Field(
        default=None,
        validation_alias=AliasChoices("mapUri", "googleMapsUri", "map_uri"),
        serialization_alias="mapUri",
    )
    is_verified: bool = False
    image_uri: str | None = None
    website_uri: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator(
        "original_text", "sub_category", "description", "location_guess", mode="before"
    )
    @classmethod
    def _blank_if_missing(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator(
        "address", "opening_hours", "map_uri", "image_uri", "website_uri", mode="before"
    )
    @classmethod
    def _none_if_blank(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> CategoryType:
        if isinstance(value, CategoryType):
            return value
        if isinstance(value, str):
            try:
                return CategoryType(value.strip().upper())
            except ValueError:
                pass
        return CategoryType.OTHER

    @field_validator("price_level", mode="before")
    @classmethod
    def _coerce_price_level(cls, value: Any) -> PriceLevel:
        if isinstance(value, PriceLevel):
            return value
        if isinstance(value, str):
            cleaned = value.strip()
            for level in PriceLevel:
                if cleaned.lower() == level.value.lower():
                    return level
        return PriceLevel.UNKNOWN

    @field_validator("rating_prediction", mode="before")
    @classmethod
    def _clamp_rating(cls, value: Any) -> float:
        try:
            rating = float(value)
        except (TypeError, ValueError):
            return DEFAULT_RATING
        if not math.isfinite(rating):
            return DEFAULT_RATING
        return min(5.0, max(1.0, rating))

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: Any) -> list[str]:
        if not isinstance(value, list | tuple):
            return []
        return [str(tag).strip() for tag in value if tag is not None and str(tag).strip()]

    @field_validator("coordinates", mode="before")
    @classmethod
    def _drop_invalid_coordinates(cls, value: Any) -> Any:
        # Out-of-range or non-finite coordinates make the record coordinate-less,
        # the rest of the record is still kept.
        if value is None:
            return None
        if isinstance(value, Coordinates):
            return value if value.is_valid else None
        if isinstance(value, dict):
            try:
                return Coordinates.model_validate(value)
            except ValidationError:
                logger.debug(f"Discarding invalid coordinates: {value!r}")
                return None
        return None

    @property
    def has_coordinates(self) -> bool:
        """Return True when the record carries usable coordinates."""
        return self.coordinates is not None and self.coordinates.is_valid

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to a dictionary using wire (camelCase) names.

        Returns:
            dict[str, Any]: A JSON-compatible representation of the place.
        """
        return self.model_dump(by_alias=True, mode="json")


class AnalysisResult(BaseModel):
    """One extraction batch: a summary and the places found in the content.

    Attributes:
        summary: One-sentence summary of the analysed content.
        places: Places in the order the response listed them.
        suggested_itinerary: Optional route plan extracted from the content.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    summary: str = ""
    places: list[PlaceRecord] = Field(default_factory=list)
    suggested_itinerary: str | None = None

    @field_validator("summary", mode="before")
    @classmethod
    def _blank_summary(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("suggested_itinerary", mode="before")
    @classmethod
    def _none_if_blank(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert the batch to a dictionary using wire (camelCase) names."""
        return self.model_dump(by_alias=True, mode="json")


class WebCitation(BaseModel):
    """Grounding evidence returned by the web search tool."""

    kind: Literal["web"] = "web"
    title: str | None = None
    uri: str | None = None


class MapCitation(BaseModel):
    """Grounding evidence returned by the maps tool."""

    kind: Literal["maps"] = "maps"
    title: str | None = None
    uri: str | None = None
    place_id: str | None = None


Citation = Annotated[WebCitation | MapCitation, Field(discriminator="kind")]


class GenerationResponse(BaseModel):
    """Raw output of one text-generation call.

    Attributes:
        text: Untrusted response text.
        evidence: Grounding citations, possibly empty or irrelevant.
    """

    text: str = ""
    evidence: list[Citation] = Field(default_factory=list)
