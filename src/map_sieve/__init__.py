"""Place extraction pipeline for travel content."""

from .backend.client import GeminiGenerator
from .backend.dedup import deduplicate, merge_results
from .backend.grounding import reconcile
from .backend.parser import parse_response
from .backend.retry import with_retry
from .backend.service import ExtractionService
from .config import GeminiSettings, LoggingSettings, RetrySettings, Settings, get_settings
from .errors import (
    MalformedResponse,
    NonRetryableUpstreamFailure,
    TransientUpstreamFailure,
    UpstreamFailure,
)
from .logger import configure_logging
from .models import AnalysisResult, CategoryType, PlaceRecord, PriceLevel
from .utils import decompose_location

__all__ = [
    "AnalysisResult",
    "CategoryType",
    "ExtractionService",
    "GeminiGenerator",
    "GeminiSettings",
    "LoggingSettings",
    "MalformedResponse",
    "NonRetryableUpstreamFailure",
    "PlaceRecord",
    "PriceLevel",
    "RetrySettings",
    "Settings",
    "TransientUpstreamFailure",
    "UpstreamFailure",
    "configure_logging",
    "decompose_location",
    "deduplicate",
    "get_settings",
    "merge_results",
    "parse_response",
    "reconcile",
    "with_retry",
]
