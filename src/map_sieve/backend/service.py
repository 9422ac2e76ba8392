"""Module for the MapSieve extraction service business logic.

This module provides the core service class `ExtractionService`, which chains
the generation call, the recovery parser, grounding reconciliation and
deduplication into one unit. Nothing is handed back to the caller until the whole
chain has succeeded, so a failed call never leaves a partial catalogue behind.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from map_sieve.backend.client import GeminiGenerator, Generator
from map_sieve.backend.dedup import deduplicate, merge_results
from map_sieve.backend.grounding import reconcile
from map_sieve.backend.parser import parse_response
from map_sieve.backend.prompts import GroundingTool, build_image_prompt, build_text_prompt
from map_sieve.backend.retry import classify_failure, with_retry
from map_sieve.config import Settings
from map_sieve.errors import MalformedResponse
from map_sieve.models import AnalysisResult, CategoryType, GenerationResponse

# Create a module-level logger
logger = logging.getLogger(__name__)


class ExtractionService:
    """Core business logic for turning travel content into a place catalogue.

    Attributes:
        settings (Settings): Application configuration settings.
        generator (Generator): The text-generation boundary.
        sleep (Callable): Awaitable sleep used for retry backoff.
    """

    def __init__(
        self,
        settings: Settings,
        generator: Generator | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the ExtractionService.

        Args:
            settings: Application configuration object.
            generator: Text-generation boundary; a GeminiGenerator built from the
                settings is used when omitted.
            sleep: Awaitable sleep for backoff delays; tests inject a fake.
        """
        self.settings = settings
        self.generator = generator or GeminiGenerator(settings.gemini)
        self.sleep = sleep

    async def analyze_text(
        self, raw_text: str, category_hint: CategoryType | str | None = None
    ) -> AnalysisResult:
        """Extract places from a URL, HTML source or free text.

        Args:
            raw_text: The content submitted by the user.
            category_hint: Optional category to prioritise; "AUTO" means none.

        Returns:
            The reconciled, deduplicated batch.

        Raises:
            ValueError: If the input is blank.
            MalformedResponse: If the response could not be recovered.
            UpstreamFailure: If the generation call failed, after retries when transient.
        """
        if not raw_text or not raw_text.strip():
            raise ValueError("Nothing to analyze: the input is empty.")

        gemini = self.settings.gemini
        prompt, tool = build_text_prompt(
            raw_text,
            category_hint,
            output_language=gemini.output_language,
            html_char_limit=gemini.html_char_limit,
        )
        logger.info(f"Analyzing {len(raw_text.strip())} characters with tool '{tool.value}'.")
        response = await self._generate(prompt, model=gemini.text_model, tool=tool)
        return self._build_batch(response, id_prefix="place")

    async def analyze_image(self, data: bytes, mime_type: str) -> AnalysisResult:
        """Extract places from an image, falling back to a second model on failure.

        Image calls carry no grounding tool, so no place comes back verified.

        Args:
            data: Raw image bytes.
            mime_type: MIME type of the image (e.g. "image/png").

        Returns:
            The deduplicated batch.

        Raises:
            ValueError: If the image is empty.
            MalformedResponse: If the fallback response could not be recovered.
            UpstreamFailure: If the fallback generation call failed.
        """
        if not data:
            raise ValueError("Nothing to analyze: the image is empty.")

        gemini = self.settings.gemini
        prompt = build_image_prompt(output_language=gemini.output_language)
        try:
            return await self._analyze_image_with(gemini.image_model, prompt, data, mime_type)
        except Exception as exception:
            if gemini.image_fallback_model == gemini.image_model:
                raise
            logger.warning(
                f"Image analysis with {gemini.image_model} failed ({exception}). "
                f"Falling back to {gemini.image_fallback_model}."
            )
        return await self._analyze_image_with(gemini.image_fallback_model, prompt, data, mime_type)

    def append_analysis(
        self, existing: AnalysisResult | None, incoming: AnalysisResult
    ) -> AnalysisResult:
        """Merge a new batch into the current catalogue.

        Callers must serialize appends; the catalogue has a single writer.

        Args:
            existing: The current catalogue, or None.
            incoming: A batch returned by `analyze_text` or `analyze_image`.

        Returns:
            A new catalogue; existing places keep their ids and positions.
        """
        merged = merge_results(existing, incoming)
        before = len(existing.places) if existing else 0
        logger.info(
            f"Appended batch of {len(incoming.places)} places to {before}; "
            f"catalogue now holds {len(merged.places)}."
        )
        return merged

    async def _analyze_image_with(
        self, model: str, prompt: str, data: bytes, mime_type: str
    ) -> AnalysisResult:
        response = await self._generate(
            prompt, model=model, tool=GroundingTool.NONE, image=(data, mime_type)
        )
        return self._build_batch(response, id_prefix="img-place")

    async def _generate(self, prompt: str, **kwargs: Any) -> GenerationResponse:
        """Call the generator under the retry policy, translating failures."""
        retry = self.settings.retry
        try:
            return await with_retry(
                lambda: self.generator.generate(prompt, **kwargs),
                max_attempts=retry.max_attempts,
                initial_delay=retry.initial_delay,
                sleep=self.sleep,
            )
        except Exception as exception:
            failure = classify_failure(exception)
            logger.error(f"Generation failed: {failure.message}")
            if failure is exception:
                raise
            raise failure from exception

    def _build_batch(self, response: GenerationResponse, id_prefix: str) -> AnalysisResult:
        if not response.text.strip():
            logger.error("Model returned an empty response.")
            raise MalformedResponse(response.text, "Model returned an empty response.")

        parsed = parse_response(response.text, id_prefix=id_prefix)
        places = deduplicate(reconcile(parsed.places, response.evidence))
        logger.info(
            f"Extracted {len(places)} places "
            f"({sum(place.is_verified for place in places)} verified)."
        )
        return parsed.model_copy(update={"places": places})
