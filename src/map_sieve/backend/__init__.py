"""Backend package for MapSieve."""

from .client import GeminiGenerator, Generator
from .dedup import deduplicate, merge_results
from .grounding import cross_reference, reconcile
from .parser import parse_response, try_parse_response
from .retry import classify_failure, is_transient, with_retry
from .service import ExtractionService

__all__ = [
    "ExtractionService",
    "GeminiGenerator",
    "Generator",
    "classify_failure",
    "cross_reference",
    "deduplicate",
    "is_transient",
    "merge_results",
    "parse_response",
    "reconcile",
    "try_parse_response",
    "with_retry",
]
