"""Text-generation boundary backed by the Gemini API.

`GeminiGenerator` is the only place that talks to google-genai. It turns a
response into plain text plus grounding citations; everything downstream treats
the text as untrusted input.
"""

import logging
from typing import Any, Protocol

from google import genai
from google.genai import types

from map_sieve.backend.prompts import GroundingTool
from map_sieve.config import GeminiSettings
from map_sieve.errors import NonRetryableUpstreamFailure
from map_sieve.models import Citation, GenerationResponse, MapCitation, WebCitation

logger = logging.getLogger(__name__)


class Generator(Protocol):
    """Anything that can answer a prompt with text and optional evidence."""

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        tool: GroundingTool = GroundingTool.NONE,
        image: tuple[bytes, str] | None = None,
    ) -> GenerationResponse: ...


def extract_evidence(response: types.GenerateContentResponse) -> list[Citation]:
    """Convert the grounding chunks of the first candidate into citations.

    Args:
        response: A generate-content response.

    Returns:
        Map and web citations in chunk order; chunks of other kinds are skipped.
    """
    if not response.candidates:
        return []
    metadata = response.candidates[0].grounding_metadata
    if metadata is None or not metadata.grounding_chunks:
        return []

    citations: list[Citation] = []
    for chunk in metadata.grounding_chunks:
        if chunk.maps is not None:
            maps = chunk.maps
            citations.append(MapCitation(title=maps.title, uri=maps.uri, place_id=maps.place_id))
        elif chunk.web is not None:
            citations.append(WebCitation(title=chunk.web.title, uri=chunk.web.uri))
    return citations


def _raise_if_blocked(response: types.GenerateContentResponse) -> None:
    feedback = response.prompt_feedback
    if feedback is not None and feedback.block_reason is not None:
        raise NonRetryableUpstreamFailure(
            f"Content was blocked by safety filters ({feedback.block_reason}).", status="SAFETY"
        )
    if response.candidates and response.candidates[0].finish_reason == types.FinishReason.SAFETY:
        raise NonRetryableUpstreamFailure(
            "Response was stopped by safety filters.", status="SAFETY"
        )


class GeminiGenerator:
    """Generator implementation using the google-genai async client.

    Attributes:
        settings (GeminiSettings): API key and model names.
        client (genai.Client): The underlying SDK client.
    """

    _TOOLS = {
        GroundingTool.MAPS: types.Tool(google_maps=types.GoogleMaps()),
        GroundingTool.SEARCH: types.Tool(google_search=types.GoogleSearch()),
    }

    def __init__(self, settings: GeminiSettings, client: genai.Client | None = None) -> None:
        """Initialize the generator.

        Args:
            settings: Gemini configuration.
            client: Optional pre-built SDK client; one is created from the API key
                otherwise.
        """
        self.settings = settings
        self.client = client or genai.Client(api_key=settings.api_key)

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        tool: GroundingTool = GroundingTool.NONE,
        image: tuple[bytes, str] | None = None,
    ) -> GenerationResponse:
        """Send one prompt to the model.

        Tools are never combined with a response schema; the structure is requested
        in the prompt instead.

        Args:
            prompt: The full prompt text.
            model: Model name; defaults to the configured text model.
            tool: Grounding tool to enable.
            image: Optional (data, mime type) pair sent ahead of the prompt.

        Returns:
            The response text and its grounding citations.

        Raises:
            NonRetryableUpstreamFailure: If safety filters blocked the content.
            google.genai.errors.APIError: On API failures, for the retry layer to classify.
        """
        contents: list[Any] = []
        if image is not None:
            data, mime_type = image
            contents.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        contents.append(prompt)

        config = None
        if tool is not GroundingTool.NONE:
            config = types.GenerateContentConfig(tools=[self._TOOLS[tool]])

        model_name = model or self.settings.text_model
        logger.debug(f"Calling {model_name} with tool '{tool.value}'.")
        response = await self.client.aio.models.generate_content(
            model=model_name, contents=contents, config=config
        )

        _raise_if_blocked(response)
        return GenerationResponse(text=response.text or "", evidence=extract_evidence(response))
