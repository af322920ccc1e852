"""Generation capability: protocol, Anthropic adapter, rate-limit backoff.

The refinement controller only knows the GenerationCapability call shape;
AnthropicBlockGenerator is one implementation of it.
"""

import json
import logging
import re
from typing import Any, Optional, Protocol

import anthropic
from pydantic import BaseModel, ValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...core.config import Config
from ...core.observability import get_logfire
from .errors import GenerationError, RateLimitedError
from .models import GenerationImages, RenderableBlock, StyleProfile
from .prompts import REFERENCE_IMAGE_LABEL, RENDERED_IMAGE_LABEL, build_refinement_prompt
from .style_sampler import format_profile_for_prompt

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class GenerationCapability(Protocol):
    """Async callable producing a refined block from images and the current block."""

    async def __call__(
        self,
        images: GenerationImages,
        block: RenderableBlock,
        instruction: Optional[str] = None,
    ) -> RenderableBlock:
        ...


class RefinedBlockPayload(BaseModel):
    """JSON object the model is asked to return."""
    html: str
    css: str
    js: str = ""
    notes: Optional[str] = None


def _strip_code_fences(text: str) -> str:
    """Strip markdown code fences from model output."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_refined_payload(text: str) -> RefinedBlockPayload:
    """Extract and validate the JSON object from a model reply.

    Raises:
        GenerationError: No JSON object, invalid JSON, or missing fields.
    """
    match = _JSON_OBJECT_RE.search(_strip_code_fences(text or ""))
    if not match:
        raise GenerationError("Failed to parse refinement response: no JSON object found")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise GenerationError(f"Failed to parse refinement response: {e}") from e
    try:
        return RefinedBlockPayload.model_validate(data)
    except ValidationError as e:
        raise GenerationError(f"Refinement response has wrong shape: {e}") from e


class AnthropicBlockGenerator:
    """Refines blocks with a Claude vision model.

    Sends the reference and rendered images (labelled) followed by the
    refinement prompt, and turns the JSON reply into a RenderableBlock
    keeping the input block's name.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        style_profile: Optional[StyleProfile] = None,
        client: Optional[Any] = None,
    ):
        """
        Args:
            api_key: Anthropic API key (defaults to Config.ANTHROPIC_API_KEY)
            model: Model name (defaults to Config.REFINEMENT_MODEL)
            max_tokens: Reply budget (defaults to Config.REFINEMENT_MAX_TOKENS)
            style_profile: Optional computed styles of the original region
            client: Pre-built AsyncAnthropic-compatible client
        """
        if client is not None:
            self.client = client
        else:
            key = api_key or Config.ANTHROPIC_API_KEY
            if not key:
                logger.warning("ANTHROPIC_API_KEY not set - refinement generation will fail")
                self.client = None
            else:
                self.client = anthropic.AsyncAnthropic(api_key=key)

        self.model = model or Config.REFINEMENT_MODEL
        self.max_tokens = max_tokens or Config.REFINEMENT_MAX_TOKENS
        self.style_profile = style_profile
        self.last_notes: Optional[str] = None
        self._lf = get_logfire()

    def _ensure_client(self) -> None:
        if not self.client:
            raise GenerationError(
                "Anthropic client not configured. Set ANTHROPIC_API_KEY environment variable."
            )

    async def __call__(
        self,
        images: GenerationImages,
        block: RenderableBlock,
        instruction: Optional[str] = None,
    ) -> RenderableBlock:
        self._ensure_client()

        style_text = None
        if self.style_profile is not None and not self.style_profile.is_empty():
            style_text = format_profile_for_prompt(self.style_profile)
        prompt = build_refinement_prompt(block, instruction=instruction, style_profile_text=style_text)

        content = []
        for label, image in (
            (REFERENCE_IMAGE_LABEL, images.reference),
            (RENDERED_IMAGE_LABEL, images.rendered),
        ):
            content.append({"type": "text", "text": label})
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
            })
        content.append({"type": "text", "text": prompt})

        with self._lf.span("generate_refinement", block=block.name, model=self.model):
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[{"role": "user", "content": content}],
                )
            except anthropic.RateLimitError as e:
                raise RateLimitedError(f"Anthropic rate limit: {e}") from e
            except anthropic.APIError as e:
                raise GenerationError(f"Anthropic API error: {e}") from e

        text = next(
            (part.text for part in response.content if getattr(part, "type", None) == "text"),
            None,
        )
        if not text:
            raise GenerationError("No text response from model")

        payload = parse_refined_payload(text)
        self.last_notes = payload.notes
        if payload.notes:
            logger.info(f"Refinement notes for '{block.name}': {payload.notes}")

        return RenderableBlock(
            name=block.name,
            markup=payload.html,
            stylesheet=payload.css,
            behavior=payload.js,
        )


def with_rate_limit_backoff(
    capability: GenerationCapability,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> GenerationCapability:
    """Wrap a capability with exponential backoff on RateLimitedError.

    Delays double from base_delay; after max_retries retries the last
    RateLimitedError propagates. Other errors are never retried.
    """
    retries = Config.RATE_LIMIT_MAX_RETRIES if max_retries is None else max_retries
    delay = Config.RATE_LIMIT_BASE_DELAY if base_delay is None else base_delay

    @retry(
        retry=retry_if_exception_type(RateLimitedError),
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=delay, min=delay, max=delay * (2 ** retries)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def call(
        images: GenerationImages,
        block: RenderableBlock,
        instruction: Optional[str] = None,
    ) -> RenderableBlock:
        return await capability(images, block, instruction)

    return call
