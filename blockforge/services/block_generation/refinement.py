"""Refinement Controller: render, compare, regenerate, re-measure.

One refine() call spends at most one generation call. Longer chains
(refine_iteratively) and concurrent chains (refine_variants) are drivers
layered on top; every chain owns its RefinementState and nothing is shared
between chains except the renderer's browser.

State machine:

    IDLE -> RENDERING -> COMPARING -> CONVERGED
                             |
                             +-> REFINING -> RENDERING -> COMPARING -> ...
                                                             |
                                                             +-> CONVERGED | EXHAUSTED

Any non-terminal phase may move to FAILED.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Protocol, Sequence, Tuple, Union

from ...core.config import Config
from ...core.observability import get_logfire
from .comparator import compare
from .errors import BlockGenerationError, GenerationError
from .generation import GenerationCapability
from .image_utils import compress_for_generation
from .models import (
    DiffResult,
    GenerationImages,
    RefinementPhase,
    RefinementResult,
    RefinementState,
    RenderableBlock,
    Viewport,
)
from .url_integrity import restore_original_urls

logger = logging.getLogger(__name__)

Phase = RefinementPhase

ALLOWED_TRANSITIONS: Dict[RefinementPhase, FrozenSet[RefinementPhase]] = {
    Phase.IDLE: frozenset([Phase.RENDERING, Phase.FAILED]),
    Phase.RENDERING: frozenset([Phase.COMPARING, Phase.FAILED]),
    Phase.COMPARING: frozenset([Phase.CONVERGED, Phase.REFINING, Phase.EXHAUSTED, Phase.FAILED]),
    Phase.REFINING: frozenset([Phase.RENDERING, Phase.FAILED]),
    Phase.CONVERGED: frozenset(),
    Phase.EXHAUSTED: frozenset(),
    Phase.FAILED: frozenset(),
}

TERMINAL_PHASES = frozenset([Phase.CONVERGED, Phase.EXHAUSTED, Phase.FAILED])


class InvalidTransitionError(RuntimeError):
    """Refinement state asked to move along an edge the machine does not have."""


def transition(state: RefinementState, target: RefinementPhase) -> None:
    if target not in ALLOWED_TRANSITIONS[state.phase]:
        raise InvalidTransitionError(f"Illegal refinement transition {state.phase.value} -> {target.value}")
    logger.debug(f"Refinement phase {state.phase.value} -> {target.value}")
    state.phase = target


class Renderer(Protocol):
    async def render(self, block: RenderableBlock, viewport: Optional[Viewport] = None) -> str:
        ...


@dataclass
class RefinementOptions:
    """Per-call knobs; None falls back to Config."""
    threshold: Optional[float] = None
    instruction: Optional[str] = None
    viewport: Optional[Viewport] = None
    pixel_threshold: Optional[float] = None
    max_image_bytes: Optional[int] = None
    generation_timeout: Optional[float] = None


def _no_op_note(score: float, threshold: float) -> str:
    return f"Diff score {score:.2f}% is below threshold {threshold:.2f}%; no refinement applied"


def _delta_note(before: float, after: float) -> str:
    return f"Diff score changed from {before:.2f}% to {after:.2f}% ({after - before:+.2f})"


class RefinementController:
    """Drives render -> compare -> generate cycles for one reference image."""

    def __init__(
        self,
        renderer: Renderer,
        generation: GenerationCapability,
        options: Optional[RefinementOptions] = None,
    ):
        options = options or RefinementOptions()
        self.renderer = renderer
        self.generation = generation
        self.instruction = options.instruction
        self.threshold = Config.DIFF_THRESHOLD if options.threshold is None else options.threshold
        self.viewport = options.viewport or Config.viewport()
        self.pixel_threshold = (
            Config.PIXEL_MATCH_THRESHOLD if options.pixel_threshold is None else options.pixel_threshold
        )
        self.max_image_bytes = options.max_image_bytes or Config.GENERATION_MAX_IMAGE_BYTES
        self.generation_timeout = options.generation_timeout or Config.GENERATION_TIMEOUT_SECONDS
        self._lf = get_logfire()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def refine(self, reference_image: str, block: RenderableBlock) -> RefinementResult:
        """Single refinement step.

        Renders and measures block; if it is already under threshold (and no
        instruction was given) returns it unchanged. Otherwise calls the
        generation capability exactly once and returns the regenerated block
        with its new measurement, whether or not the score improved.

        Raises:
            BlockGenerationError: propagated after the state moves to FAILED.
            Unexpected errors also fail the state and propagate unchanged.
        """
        state = RefinementState(best_block=block, max_iterations=1)
        result, _ = await self._run_chain(reference_image, block, state, keep_best=False)
        return result

    async def refine_iteratively(
        self,
        reference_image: str,
        block: RenderableBlock,
        max_iterations: Optional[int] = None,
    ) -> Tuple[RefinementResult, RefinementState]:
        """Sequential chain of refinements; each iteration refines the last output.

        Stops on convergence, after max_iterations generation calls, or on
        the first failure. The returned result carries the lowest-score block
        seen. A failure before anything was measured propagates.
        """
        bound = max_iterations or Config.MAX_REFINE_ITERATIONS
        state = RefinementState(best_block=block, max_iterations=bound)
        try:
            return await self._run_chain(reference_image, block, state, keep_best=True)
        except BlockGenerationError as e:
            if state.best_diff is None:
                raise
            logger.warning(f"Refinement chain stopped after {state.iteration} iteration(s): {e}")
            return self._best_result(state), state

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    async def _run_chain(
        self,
        reference_image: str,
        block: RenderableBlock,
        state: RefinementState,
        keep_best: bool,
    ) -> Tuple[RefinementResult, RefinementState]:
        with self._lf.span("refine_block", block=block.name, max_iterations=state.max_iterations):
            try:
                rendered, diff = await self._measure(state, reference_image, block)
                initial_diff = diff

                if not self.instruction and diff.score < self.threshold:
                    transition(state, Phase.CONVERGED)
                    self._lf.info(
                        "Block {block} already under threshold ({score}%)",
                        block=block.name, score=diff.score,
                    )
                    result = RefinementResult(
                        block=block,
                        diff=diff,
                        refinement_applied=False,
                        notes=_no_op_note(diff.score, self.threshold),
                        rendered_image=rendered,
                    )
                    return result, state

                current_block, current_image = block, rendered
                while True:
                    transition(state, Phase.REFINING)
                    state.iteration += 1
                    refined = await self._generate(reference_image, current_image, current_block)
                    current_image, diff = await self._measure(state, reference_image, refined)
                    current_block = refined

                    self._lf.info(
                        "Iteration {iteration}: {score}%",
                        iteration=state.iteration, score=diff.score,
                    )
                    if diff.score < self.threshold:
                        transition(state, Phase.CONVERGED)
                        break
                    if state.iteration >= state.max_iterations:
                        transition(state, Phase.EXHAUSTED)
                        break
            except Exception as e:
                if state.phase not in TERMINAL_PHASES:
                    transition(state, Phase.FAILED)
                state.error = str(e)
                raise

        if keep_best:
            return self._best_result(state, initial_diff), state

        return RefinementResult(
            block=current_block,
            diff=diff,
            refinement_applied=True,
            notes=_delta_note(initial_diff.score, diff.score),
            rendered_image=current_image,
            previous_diff=initial_diff,
        ), state

    async def _measure(
        self, state: RefinementState, reference_image: str, block: RenderableBlock
    ) -> Tuple[str, DiffResult]:
        transition(state, Phase.RENDERING)
        rendered = await self.renderer.render(block, self.viewport)
        transition(state, Phase.COMPARING)
        diff = compare(reference_image, rendered, self.pixel_threshold)
        state.record(block, diff, rendered)
        return rendered, diff

    async def _generate(
        self, reference_image: str, rendered_image: str, block: RenderableBlock
    ) -> RenderableBlock:
        images = GenerationImages(
            reference=compress_for_generation(reference_image, self.max_image_bytes),
            rendered=compress_for_generation(rendered_image, self.max_image_bytes),
        )
        try:
            refined = await asyncio.wait_for(
                self.generation(images, block, self.instruction),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(
                f"Generation for '{block.name}' exceeded {self.generation_timeout:.0f}s"
            ) from e
        except BlockGenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Generation for '{block.name}' failed: {e}") from e

        markup = restore_original_urls(refined.markup, block.markup)
        return RenderableBlock(
            name=refined.name or block.name,
            markup=markup,
            stylesheet=refined.stylesheet,
            behavior=refined.behavior,
        )

    def _best_result(
        self, state: RefinementState, initial_diff: Optional[DiffResult] = None
    ) -> RefinementResult:
        initial_diff = initial_diff or state.history[0]
        applied = state.iteration > 0 and state.best_diff is not initial_diff
        if applied:
            notes = _delta_note(initial_diff.score, state.best_diff.score)
        elif state.iteration == 0:
            notes = _no_op_note(initial_diff.score, self.threshold)
        else:
            notes = (
                f"No iteration improved on the initial diff score {initial_diff.score:.2f}% "
                f"after {state.iteration} attempt(s)"
            )
        return RefinementResult(
            block=state.best_block,
            diff=state.best_diff,
            refinement_applied=applied,
            notes=notes,
            rendered_image=state.best_image,
            previous_diff=initial_diff if applied else None,
        )


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------


async def refine(
    reference_image: str,
    block: RenderableBlock,
    generation: GenerationCapability,
    options: Optional[RefinementOptions] = None,
    renderer: Optional[Renderer] = None,
) -> RefinementResult:
    """One refinement step; launches its own renderer when none is given."""
    if renderer is not None:
        return await RefinementController(renderer, generation, options).refine(reference_image, block)

    from .renderer import BlockRenderer

    async with BlockRenderer() as own_renderer:
        return await RefinementController(own_renderer, generation, options).refine(reference_image, block)


async def refine_variants(
    reference_image: str,
    blocks: Sequence[RenderableBlock],
    renderer: Renderer,
    generation: GenerationCapability,
    options: Optional[RefinementOptions] = None,
    max_iterations: Optional[int] = None,
    max_concurrent: Optional[int] = None,
) -> List[Union[Tuple[RefinementResult, RefinementState], Exception]]:
    """Run one iterative chain per candidate block, concurrently.

    At most max_concurrent chains run at once. A chain that fails outright,
    with a typed or an unexpected error, contributes that exception in place
    of a result; siblings are unaffected.
    Output order matches blocks.
    """
    limit = max_concurrent or Config.MAX_CONCURRENT_CHAINS
    sem = asyncio.Semaphore(limit)

    async def run_chain(block: RenderableBlock):
        async with sem:
            controller = RefinementController(renderer, generation, options)
            try:
                return await controller.refine_iteratively(reference_image, block, max_iterations)
            except Exception as e:
                logger.warning(f"Variant '{block.name}' failed: {e!r}")
                return e

    logger.info(f"Refining {len(blocks)} variant(s), up to {limit} at a time")
    return list(await asyncio.gather(*[run_chain(block) for block in blocks]))
