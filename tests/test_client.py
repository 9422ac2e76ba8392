"""Tests for the Gemini generation boundary."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from map_sieve.backend.client import GeminiGenerator, extract_evidence
from map_sieve.backend.prompts import GroundingTool
from map_sieve.config import GeminiSettings
from map_sieve.errors import NonRetryableUpstreamFailure
from map_sieve.models import MapCitation, WebCitation

RESPONSE_TEXT = '{"summary": "s", "places": [{"name": "Cafe A"}]}'


def make_response(
    text: str = RESPONSE_TEXT,
    chunks: list[types.GroundingChunk] | None = None,
    finish_reason: types.FinishReason | None = types.FinishReason.STOP,
) -> types.GenerateContentResponse:
    """Build a generate-content response with one candidate."""
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(role="model", parts=[types.Part(text=text)]),
                finish_reason=finish_reason,
                grounding_metadata=types.GroundingMetadata(grounding_chunks=chunks),
            )
        ]
    )


@pytest.fixture
def settings() -> GeminiSettings:
    """Fixture for Gemini settings."""
    return GeminiSettings(api_key="test-key")


@pytest.fixture
def client() -> MagicMock:
    """Fixture for a mocked google-genai client."""
    mock_client = MagicMock()
    mock_client.aio.models.generate_content = AsyncMock(return_value=make_response())
    return mock_client


class TestExtractEvidence:
    """Tests for converting grounding chunks into citations."""

    def test_maps_and_web_chunks(self) -> None:
        """Test that both chunk kinds become tagged citations in order."""
        response = make_response(
            chunks=[
                types.GroundingChunk(
                    maps=types.GroundingChunkMaps(
                        title="Cafe A", uri="https://maps.google.com/?cid=1", place_id="places/a"
                    )
                ),
                types.GroundingChunk(
                    web=types.GroundingChunkWeb(title="Blog", uri="https://blog.example.com")
                ),
                types.GroundingChunk(),
            ]
        )
        evidence = extract_evidence(response)

        assert evidence == [
            MapCitation(title="Cafe A", uri="https://maps.google.com/?cid=1", place_id="places/a"),
            WebCitation(title="Blog", uri="https://blog.example.com"),
        ]

    def test_no_grounding(self) -> None:
        """Test responses without grounding metadata."""
        assert extract_evidence(make_response()) == []
        assert extract_evidence(types.GenerateContentResponse()) == []


class TestGeminiGenerator:
    """Tests for the generate call."""

    def test_text_call(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test a grounded text call."""
        generator = GeminiGenerator(settings, client=client)

        response = asyncio.run(generator.generate("prompt", tool=GroundingTool.MAPS))

        assert response.text == RESPONSE_TEXT
        assert response.evidence == []
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == settings.text_model
        assert kwargs["contents"] == ["prompt"]
        assert kwargs["config"].tools[0].google_maps is not None

    def test_search_tool(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that URL analysis uses the search tool."""
        generator = GeminiGenerator(settings, client=client)
        asyncio.run(generator.generate("prompt", tool=GroundingTool.SEARCH))
        config = client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.tools[0].google_search is not None

    def test_image_call(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that an image is sent ahead of the prompt without tools."""
        generator = GeminiGenerator(settings, client=client)

        asyncio.run(
            generator.generate("prompt", model="image-model", image=(b"\x89PNG", "image/png"))
        )

        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "image-model"
        assert kwargs["config"] is None
        image_part, prompt = kwargs["contents"]
        assert image_part.inline_data.mime_type == "image/png"
        assert image_part.inline_data.data == b"\x89PNG"
        assert prompt == "prompt"

    def test_empty_text(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that a response without text yields an empty string."""
        client.aio.models.generate_content.return_value = types.GenerateContentResponse()
        response = asyncio.run(GeminiGenerator(settings, client=client).generate("prompt"))
        assert response.text == ""

    def test_blocked_prompt(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that a blocked prompt is a non-retryable failure."""
        client.aio.models.generate_content.return_value = types.GenerateContentResponse(
            prompt_feedback=types.GenerateContentResponsePromptFeedback(
                block_reason=types.BlockedReason.SAFETY
            )
        )
        with pytest.raises(NonRetryableUpstreamFailure) as exc_info:
            asyncio.run(GeminiGenerator(settings, client=client).generate("prompt"))
        assert exc_info.value.status == "SAFETY"

    def test_safety_stop(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that a response stopped by safety filters is a failure."""
        client.aio.models.generate_content.return_value = make_response(
            text="", finish_reason=types.FinishReason.SAFETY
        )
        with pytest.raises(NonRetryableUpstreamFailure):
            asyncio.run(GeminiGenerator(settings, client=client).generate("prompt"))

    def test_api_errors_propagate(self, settings: GeminiSettings, client: MagicMock) -> None:
        """Test that SDK errors are left for the retry layer to classify."""
        error = RuntimeError("503 UNAVAILABLE")
        client.aio.models.generate_content.side_effect = error
        with pytest.raises(RuntimeError) as exc_info:
            asyncio.run(GeminiGenerator(settings, client=client).generate("prompt"))
        assert exc_info.value is error
