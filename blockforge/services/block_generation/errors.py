"""Error taxonomy for block generation.

Classification and style sampling never raise for "no match" conditions;
PARSE_TOLERATED exists only as a log code for degraded parses.
"""

from enum import Enum


class ErrorCode(str, Enum):
    PARSE_TOLERATED = "PARSE_TOLERATED"
    IMAGE_DECODE_ERROR = "IMAGE_DECODE_ERROR"
    RENDER_TIMEOUT = "RENDER_TIMEOUT"
    RENDER_FAILURE = "RENDER_FAILURE"
    GENERATION_FAILURE = "GENERATION_FAILURE"
    RATE_LIMITED = "RATE_LIMITED"


class BlockGenerationError(Exception):
    """Base error carrying a taxonomy code."""

    code: ErrorCode = ErrorCode.GENERATION_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class ImageDecodeError(BlockGenerationError):
    """Comparator input could not be decoded or has zero area."""
    code = ErrorCode.IMAGE_DECODE_ERROR


class RenderTimeoutError(BlockGenerationError):
    """Navigation, load or image wait exceeded its bound."""
    code = ErrorCode.RENDER_TIMEOUT


class RenderError(BlockGenerationError):
    """Browser failed while rendering (closed page, crashed context)."""
    code = ErrorCode.RENDER_FAILURE


class GenerationError(BlockGenerationError):
    """External generation capability failed or returned unusable output."""
    code = ErrorCode.GENERATION_FAILURE


class RateLimitedError(BlockGenerationError):
    """Generation capability refused the call; retry with backoff."""
    code = ErrorCode.RATE_LIMITED
