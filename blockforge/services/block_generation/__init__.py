"""Block generation: classify a page fragment into a typed content block,
build a renderable bundle from it, and refine that bundle against a
reference screenshot until it looks close enough.
"""

from .models import (
    BlockKind,
    ContentBlock,
    ContentItem,
    DiffResult,
    ImageRef,
    LinkRef,
    RefinementPhase,
    RefinementResult,
    RefinementState,
    RenderableBlock,
    StyleHints,
    StyleProfile,
    Viewport,
)
from .errors import (
    BlockGenerationError,
    ErrorCode,
    GenerationError,
    ImageDecodeError,
    RateLimitedError,
    RenderError,
    RenderTimeoutError,
)
from .classifier import classify
from .block_builder import build_block
from .comparator import compare
from .url_integrity import restore_original_urls
from .style_sampler import format_profile_for_prompt, sample_styles, sample_styles_from_url
from .renderer import BlockRenderer, render
from .generation import AnthropicBlockGenerator, GenerationCapability, with_rate_limit_backoff
from .refinement import RefinementController, RefinementOptions, refine, refine_variants

__all__ = [
    "BlockKind",
    "ContentBlock",
    "ContentItem",
    "DiffResult",
    "ImageRef",
    "LinkRef",
    "RefinementPhase",
    "RefinementResult",
    "RefinementState",
    "RenderableBlock",
    "StyleHints",
    "StyleProfile",
    "Viewport",
    "BlockGenerationError",
    "ErrorCode",
    "GenerationError",
    "ImageDecodeError",
    "RateLimitedError",
    "RenderError",
    "RenderTimeoutError",
    "classify",
    "build_block",
    "compare",
    "restore_original_urls",
    "format_profile_for_prompt",
    "sample_styles",
    "sample_styles_from_url",
    "BlockRenderer",
    "render",
    "AnthropicBlockGenerator",
    "GenerationCapability",
    "with_rate_limit_backoff",
    "RefinementController",
    "RefinementOptions",
    "refine",
    "refine_variants",
]
