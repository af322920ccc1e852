"""Tests for the refinement controller (renderer and generation faked)."""

import asyncio
import base64
import io
from unittest.mock import AsyncMock

import pytest


def _snapshot(red_width=0, red_height=0):
    """100x100 white PNG with a red top-left rectangle (area = diff pixels vs white)."""
    from PIL import Image

    img = Image.new("RGB", (100, 100), color="white")
    if red_width and red_height:
        img.paste((255, 0, 0), (0, 0, red_width, red_height))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode()


REFERENCE = _snapshot()


def _block(name="cards", markup=None, css=""):
    from blockforge.services.block_generation import RenderableBlock

    return RenderableBlock(name=name, markup=markup or f'<div class="{name}"></div>', stylesheet=css)


def _options(**kwargs):
    from blockforge.services.block_generation import RefinementOptions, Viewport

    kwargs.setdefault("threshold", 5.0)
    kwargs.setdefault("viewport", Viewport(100, 100))
    return RefinementOptions(**kwargs)


class FakeRenderer:
    """Returns a preset snapshot per block stylesheet and tracks concurrency."""

    def __init__(self, snapshots, delay=0.0):
        self.snapshots = snapshots
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def render(self, block, viewport=None):
        self.calls.append(block)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            snapshot = self.snapshots[block.stylesheet]
            if isinstance(snapshot, Exception):
                raise snapshot
            return snapshot
        finally:
            self.active -= 1


class TestRefine:

    @pytest.mark.asyncio
    async def test_under_threshold_returns_block_unchanged(self):
        from blockforge.services.block_generation import RefinementController

        block = _block(css="v0")
        renderer = FakeRenderer({"v0": _snapshot(32, 10)})  # 3.2%
        generation = AsyncMock()

        result = await RefinementController(renderer, generation, _options()).refine(REFERENCE, block)

        assert result.block is block
        assert result.diff.score == 3.2
        assert result.refinement_applied is False
        assert "3.20%" in result.notes
        assert result.rendered_image == _snapshot(32, 10)
        generation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_over_threshold_calls_generation_once(self):
        from blockforge.services.block_generation import RefinementController

        block = _block(css="v0")
        refined = _block(css="v1")
        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot(20, 10)})
        generation = AsyncMock(return_value=refined)

        result = await RefinementController(renderer, generation, _options()).refine(REFERENCE, block)

        assert generation.await_count == 1
        assert result.block == refined
        assert result.diff.score == 2.0
        assert result.previous_diff.score == 12.0
        assert result.refinement_applied is True
        assert "12.00% to 2.00%" in result.notes
        assert [b.stylesheet for b in renderer.calls] == ["v0", "v1"]

    @pytest.mark.asyncio
    async def test_single_step_returns_regression_too(self):
        from blockforge.services.block_generation import RefinementController

        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot(50, 30)})
        generation = AsyncMock(return_value=_block(css="v1"))

        result = await RefinementController(renderer, generation, _options()).refine(REFERENCE, _block(css="v0"))

        assert result.block.stylesheet == "v1"
        assert result.diff.score == 15.0
        assert result.refinement_applied is True

    @pytest.mark.asyncio
    async def test_generation_receives_images_and_instruction(self):
        from blockforge.services.block_generation import RefinementController

        block = _block(css="v0")
        renderer = FakeRenderer({"v0": _snapshot(), "v1": _snapshot()})
        generation = AsyncMock(return_value=_block(css="v1"))

        result = await RefinementController(
            renderer, generation, _options(instruction="Use a darker background")
        ).refine(REFERENCE, block)

        images, passed_block, instruction = generation.await_args.args
        assert passed_block == block
        assert instruction == "Use a darker background"
        assert images.reference.data == REFERENCE
        assert images.reference.media_type == "image/png"
        assert images.rendered.data == _snapshot()
        # Instruction forces a generation call even at 0%
        assert result.refinement_applied is True

    @pytest.mark.asyncio
    async def test_original_urls_restored(self):
        from blockforge.services.block_generation import RefinementController

        block = _block(markup='<div class="cards"><img src="https://cdn.example.com/hero.jpg"></div>', css="v0")
        refined = _block(markup='<div class="cards"><img src="placeholder.jpg" class="wide"></div>', css="v1")
        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot()})

        result = await RefinementController(
            renderer, AsyncMock(return_value=refined), _options()
        ).refine(REFERENCE, block)

        assert result.block.markup == (
            '<div class="cards"><img src="https://cdn.example.com/hero.jpg" class="wide"></div>'
        )
        assert renderer.calls[1].markup == result.block.markup

    @pytest.mark.asyncio
    async def test_generation_timeout_becomes_generation_error(self):
        from blockforge.services.block_generation import GenerationError, RefinementController

        async def slow(images, block, instruction=None):
            await asyncio.sleep(1)

        renderer = FakeRenderer({"v0": _snapshot(40, 30)})
        controller = RefinementController(renderer, slow, _options(generation_timeout=0.01))

        with pytest.raises(GenerationError):
            await controller.refine(REFERENCE, _block(css="v0"))

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self):
        from blockforge.services.block_generation import GenerationError, RefinementController

        renderer = FakeRenderer({"v0": _snapshot(40, 30)})
        generation = AsyncMock(side_effect=ValueError("boom"))

        with pytest.raises(GenerationError) as exc_info:
            await RefinementController(renderer, generation, _options()).refine(REFERENCE, _block(css="v0"))

        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_rate_limit_propagates_unchanged(self):
        from blockforge.services.block_generation import RateLimitedError, RefinementController

        renderer = FakeRenderer({"v0": _snapshot(40, 30)})
        generation = AsyncMock(side_effect=RateLimitedError("429"))

        with pytest.raises(RateLimitedError):
            await RefinementController(renderer, generation, _options()).refine(REFERENCE, _block(css="v0"))

    @pytest.mark.asyncio
    async def test_render_timeout_propagates(self):
        from blockforge.services.block_generation import RefinementController, RenderTimeoutError

        renderer = FakeRenderer({"v0": RenderTimeoutError("page never settled")})
        generation = AsyncMock()

        with pytest.raises(RenderTimeoutError):
            await RefinementController(renderer, generation, _options()).refine(REFERENCE, _block(css="v0"))

        generation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_untyped_renderer_error_fails_state(self):
        from blockforge.services.block_generation import RefinementController, RefinementPhase, RefinementState

        block = _block(css="v0")
        renderer = FakeRenderer({"v0": RuntimeError("browser crashed")})
        controller = RefinementController(renderer, AsyncMock(), _options())
        state = RefinementState(best_block=block, max_iterations=1)

        with pytest.raises(RuntimeError, match="browser crashed"):
            await controller._run_chain(REFERENCE, block, state, keep_best=False)

        assert state.phase == RefinementPhase.FAILED
        assert "browser crashed" in state.error

    @pytest.mark.asyncio
    async def test_module_refine_with_renderer(self):
        from blockforge.services.block_generation import refine

        renderer = FakeRenderer({"v0": _snapshot()})

        result = await refine(REFERENCE, _block(css="v0"), AsyncMock(), _options(), renderer=renderer)

        assert result.refinement_applied is False
        assert result.diff.score == 0


class TestRefineIteratively:

    @pytest.mark.asyncio
    async def test_keeps_best_block_when_exhausted(self):
        from blockforge.services.block_generation import RefinementController, RefinementPhase

        renderer = FakeRenderer({
            "v0": _snapshot(40, 30),  # 12%
            "v1": _snapshot(20, 10),  # 2%
            "v2": _snapshot(30, 10),  # 3%
            "v3": _snapshot(25, 10),  # 2.5%
        })
        generation = AsyncMock(side_effect=[_block(css="v1"), _block(css="v2"), _block(css="v3")])
        controller = RefinementController(renderer, generation, _options(threshold=1.0))

        result, state = await controller.refine_iteratively(REFERENCE, _block(css="v0"), max_iterations=3)

        assert state.phase == RefinementPhase.EXHAUSTED
        assert state.iteration == 3
        assert [d.score for d in state.history] == [12.0, 2.0, 3.0, 2.5]
        assert result.block.stylesheet == "v1"
        assert result.diff.score == 2.0
        assert result.refinement_applied is True
        assert result.rendered_image == _snapshot(20, 10)

    @pytest.mark.asyncio
    async def test_each_iteration_refines_previous_output(self):
        from blockforge.services.block_generation import RefinementController

        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot(30, 30), "v2": _snapshot(20, 30)})
        generation = AsyncMock(side_effect=[_block(css="v1"), _block(css="v2")])
        controller = RefinementController(renderer, generation, _options(threshold=1.0))

        await controller.refine_iteratively(REFERENCE, _block(css="v0"), max_iterations=2)

        passed = [call.args[1].stylesheet for call in generation.await_args_list]
        assert passed == ["v0", "v1"]

    @pytest.mark.asyncio
    async def test_stops_when_converged(self):
        from blockforge.services.block_generation import RefinementController, RefinementPhase

        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot(20, 10)})
        generation = AsyncMock(return_value=_block(css="v1"))
        controller = RefinementController(renderer, generation, _options())

        result, state = await controller.refine_iteratively(REFERENCE, _block(css="v0"), max_iterations=5)

        assert state.phase == RefinementPhase.CONVERGED
        assert generation.await_count == 1
        assert result.diff.score == 2.0

    @pytest.mark.asyncio
    async def test_failure_mid_chain_returns_best_so_far(self):
        from blockforge.services.block_generation import GenerationError, RefinementController, RefinementPhase

        renderer = FakeRenderer({"v0": _snapshot(40, 30), "v1": _snapshot(30, 30)})
        generation = AsyncMock(side_effect=[_block(css="v1"), GenerationError("bad reply")])
        controller = RefinementController(renderer, generation, _options(threshold=1.0))

        result, state = await controller.refine_iteratively(REFERENCE, _block(css="v0"), max_iterations=3)

        assert state.phase == RefinementPhase.FAILED
        assert "bad reply" in state.error
        assert result.block.stylesheet == "v1"
        assert result.diff.score == 9.0

    @pytest.mark.asyncio
    async def test_no_improvement_keeps_original(self):
        from blockforge.services.block_generation import RefinementController

        block = _block(css="v0")
        renderer = FakeRenderer({"v0": _snapshot(20, 30), "v1": _snapshot(40, 30)})
        controller = RefinementController(renderer, AsyncMock(return_value=_block(css="v1")), _options(threshold=1.0))

        result, _ = await controller.refine_iteratively(REFERENCE, block, max_iterations=1)

        assert result.block is block
        assert result.refinement_applied is False
        assert result.diff.score == 6.0

    @pytest.mark.asyncio
    async def test_failure_before_measurement_propagates(self):
        from blockforge.services.block_generation import RefinementController, RenderTimeoutError

        renderer = FakeRenderer({"v0": RenderTimeoutError("slow")})
        controller = RefinementController(renderer, AsyncMock(), _options())

        with pytest.raises(RenderTimeoutError):
            await controller.refine_iteratively(REFERENCE, _block(css="v0"))


class TestRefineVariants:

    @pytest.mark.asyncio
    async def test_failed_chain_does_not_affect_siblings(self):
        from blockforge.services.block_generation import RenderTimeoutError, refine_variants

        renderer = FakeRenderer({
            "a": _snapshot(10, 10),
            "b": RenderTimeoutError("slow"),
            "c": _snapshot(20, 10),
        })
        blocks = [_block("alpha", css="a"), _block("beta", css="b"), _block("gamma", css="c")]

        results = await refine_variants(REFERENCE, blocks, renderer, AsyncMock(), _options())

        assert isinstance(results[1], RenderTimeoutError)
        (first, _), (third, _) = results[0], results[2]
        assert first.block.name == "alpha"
        assert first.diff.score == 1.0
        assert third.block.name == "gamma"
        assert third.diff.score == 2.0

    @pytest.mark.asyncio
    async def test_untyped_renderer_error_isolated_to_its_chain(self):
        from blockforge.services.block_generation import refine_variants

        renderer = FakeRenderer({
            "a": _snapshot(10, 10),
            "b": RuntimeError("Target page, context or browser has been closed"),
            "c": _snapshot(20, 10),
        })
        blocks = [_block("alpha", css="a"), _block("beta", css="b"), _block("gamma", css="c")]

        results = await refine_variants(REFERENCE, blocks, renderer, AsyncMock(), _options())

        assert isinstance(results[1], RuntimeError)
        assert "browser has been closed" in str(results[1])
        (first, _), (third, _) = results[0], results[2]
        assert first.block.name == "alpha"
        assert third.diff.score == 2.0

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self):
        from blockforge.services.block_generation import refine_variants

        snapshots = {f"v{i}": _snapshot() for i in range(4)}
        renderer = FakeRenderer(snapshots, delay=0.01)
        blocks = [_block(f"b{i}", css=f"v{i}") for i in range(4)]

        results = await refine_variants(REFERENCE, blocks, renderer, AsyncMock(), _options(), max_concurrent=2)

        assert len(results) == 4
        assert renderer.max_active <= 2
        assert len(renderer.calls) == 4


class TestStateMachine:

    def test_illegal_transition_rejected(self):
        from blockforge.services.block_generation import RefinementPhase, RefinementState
        from blockforge.services.block_generation.refinement import InvalidTransitionError, transition

        state = RefinementState(best_block=_block(), max_iterations=1)

        with pytest.raises(InvalidTransitionError):
            transition(state, RefinementPhase.REFINING)
        assert state.phase == RefinementPhase.IDLE

    @pytest.mark.parametrize("terminal", ["converged", "exhausted", "failed"])
    def test_terminal_phases_have_no_exits(self, terminal):
        from blockforge.services.block_generation import RefinementPhase, RefinementState
        from blockforge.services.block_generation.refinement import InvalidTransitionError, transition

        state = RefinementState(best_block=_block(), max_iterations=1, phase=RefinementPhase(terminal))

        with pytest.raises(InvalidTransitionError):
            transition(state, RefinementPhase.RENDERING)

    def test_happy_path_transitions(self):
        from blockforge.services.block_generation import RefinementPhase, RefinementState
        from blockforge.services.block_generation.refinement import transition

        state = RefinementState(best_block=_block(), max_iterations=1)
        for phase in ("rendering", "comparing", "refining", "rendering", "comparing", "exhausted"):
            transition(state, RefinementPhase(phase))

        assert state.phase == RefinementPhase.EXHAUSTED
