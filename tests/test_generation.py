"""Tests for the generation capability adapter and backoff wrapper."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest


def _images():
    from blockforge.services.block_generation.models import EncodedImage, GenerationImages

    return GenerationImages(
        reference=EncodedImage(data="cmVmZXJlbmNl"),
        rendered=EncodedImage(data="cmVuZGVyZWQ=", media_type="image/jpeg"),
    )


def _block():
    from blockforge.services.block_generation import RenderableBlock

    return RenderableBlock(
        name="cards",
        markup='<div class="cards"><img src="/a.png"></div>',
        stylesheet=".cards { display: grid; }",
        behavior="export default function decorate(block) {}",
    )


def _response(text):
    part = MagicMock()
    part.type = "text"
    part.text = text
    response = MagicMock()
    response.content = [part]
    return response


def _client(side_effect=None, return_value=None):
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=side_effect, return_value=return_value)
    return client


def _request():
    import httpx

    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class TestParseRefinedPayload:

    def test_plain_json(self):
        from blockforge.services.block_generation.generation import parse_refined_payload

        payload = parse_refined_payload('{"html": "<div></div>", "css": "a{}", "js": "", "notes": "tweaked"}')

        assert payload.html == "<div></div>"
        assert payload.notes == "tweaked"

    def test_fenced_json_with_prose(self):
        from blockforge.services.block_generation.generation import parse_refined_payload

        text = '```json\nHere you go:\n{"html": "<p>x</p>", "css": ""}\n```'

        payload = parse_refined_payload(text)

        assert payload.html == "<p>x</p>"
        assert payload.js == ""

    def test_no_json_object(self):
        from blockforge.services.block_generation import GenerationError
        from blockforge.services.block_generation.generation import parse_refined_payload

        with pytest.raises(GenerationError):
            parse_refined_payload("I could not do that.")

    def test_invalid_json(self):
        from blockforge.services.block_generation import GenerationError
        from blockforge.services.block_generation.generation import parse_refined_payload

        with pytest.raises(GenerationError):
            parse_refined_payload('{"html": "<div>", css: }')

    def test_missing_required_field(self):
        from blockforge.services.block_generation import GenerationError
        from blockforge.services.block_generation.generation import parse_refined_payload

        with pytest.raises(GenerationError) as exc_info:
            parse_refined_payload('{"css": ".x{}"}')
        assert "GENERATION_FAILURE" in str(exc_info.value)


class TestAnthropicBlockGenerator:

    @pytest.mark.asyncio
    async def test_returns_block_with_same_name(self):
        from blockforge.services.block_generation import AnthropicBlockGenerator

        reply = json.dumps({"html": '<div class="cards">new</div>', "css": ".cards{gap:8px}", "js": "", "notes": "gap"})
        client = _client(return_value=_response(reply))
        generator = AnthropicBlockGenerator(client=client, model="test-model", max_tokens=100)

        refined = await generator(_images(), _block())

        assert refined.name == "cards"
        assert refined.markup == '<div class="cards">new</div>'
        assert refined.stylesheet == ".cards{gap:8px}"
        assert generator.last_notes == "gap"

    @pytest.mark.asyncio
    async def test_sends_labelled_images_then_prompt(self):
        from blockforge.services.block_generation import AnthropicBlockGenerator
        from blockforge.services.block_generation.prompts import REFERENCE_IMAGE_LABEL, RENDERED_IMAGE_LABEL

        client = _client(return_value=_response('{"html": "", "css": ""}'))
        generator = AnthropicBlockGenerator(client=client, model="test-model", max_tokens=100)

        await generator(_images(), _block(), instruction="Make the cards wider")

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 100
        content = kwargs["messages"][0]["content"]
        assert [part["type"] for part in content] == ["text", "image", "text", "image", "text"]
        assert content[0]["text"] == REFERENCE_IMAGE_LABEL
        assert content[1]["source"]["data"] == "cmVmZXJlbmNl"
        assert content[2]["text"] == RENDERED_IMAGE_LABEL
        assert content[3]["source"]["media_type"] == "image/jpeg"
        assert "IMPORTANT USER INSTRUCTIONS:\nMake the cards wider" in content[4]["text"]
        assert "NEVER change any URLs" in content[4]["text"]

    @pytest.mark.asyncio
    async def test_style_profile_included_in_prompt(self):
        from blockforge.services.block_generation import AnthropicBlockGenerator
        from blockforge.services.block_generation.models import StyleProfile

        profile = StyleProfile()
        profile.roles["heading"] = [{"font-size": "40px"}]
        client = _client(return_value=_response('{"html": "", "css": ""}'))
        generator = AnthropicBlockGenerator(client=client, style_profile=profile)

        await generator(_images(), _block())

        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"][-1]["text"]
        assert "## Extracted CSS Styles from Original" in prompt
        assert "font-size: 40px" in prompt

    @pytest.mark.asyncio
    async def test_rate_limit_mapped(self):
        import anthropic
        import httpx

        from blockforge.services.block_generation import AnthropicBlockGenerator, RateLimitedError

        error = anthropic.RateLimitError(
            "rate limited", response=httpx.Response(429, request=_request()), body=None
        )
        generator = AnthropicBlockGenerator(client=_client(side_effect=error))

        with pytest.raises(RateLimitedError):
            await generator(_images(), _block())

    @pytest.mark.asyncio
    async def test_api_error_mapped(self):
        import anthropic

        from blockforge.services.block_generation import AnthropicBlockGenerator, GenerationError

        error = anthropic.APIConnectionError(request=_request())
        generator = AnthropicBlockGenerator(client=_client(side_effect=error))

        with pytest.raises(GenerationError):
            await generator(_images(), _block())

    @pytest.mark.asyncio
    async def test_no_text_part(self):
        from blockforge.services.block_generation import AnthropicBlockGenerator, GenerationError

        response = MagicMock()
        response.content = []
        generator = AnthropicBlockGenerator(client=_client(return_value=response))

        with pytest.raises(GenerationError, match="No text response"):
            await generator(_images(), _block())

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        from blockforge.core.config import Config
        from blockforge.services.block_generation import AnthropicBlockGenerator, GenerationError

        monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", "")
        generator = AnthropicBlockGenerator()

        with pytest.raises(GenerationError):
            await generator(_images(), _block())


class TestRateLimitBackoff:

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self):
        from blockforge.services.block_generation import RateLimitedError, with_rate_limit_backoff

        capability = AsyncMock(side_effect=[RateLimitedError("slow down"), RateLimitedError("slow down"), _block()])
        wrapped = with_rate_limit_backoff(capability, max_retries=3, base_delay=0)

        result = await wrapped(_images(), _block(), "hint")

        assert result == _block()
        assert capability.await_count == 3
        capability.assert_awaited_with(_images(), _block(), "hint")

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        from blockforge.services.block_generation import RateLimitedError, with_rate_limit_backoff

        capability = AsyncMock(side_effect=RateLimitedError("slow down"))
        wrapped = with_rate_limit_backoff(capability, max_retries=2, base_delay=0)

        with pytest.raises(RateLimitedError):
            await wrapped(_images(), _block())

        assert capability.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        from blockforge.services.block_generation import GenerationError, with_rate_limit_backoff

        capability = AsyncMock(side_effect=GenerationError("bad reply"))
        wrapped = with_rate_limit_backoff(capability, max_retries=5, base_delay=0)

        with pytest.raises(GenerationError):
            await wrapped(_images(), _block())

        assert capability.await_count == 1
