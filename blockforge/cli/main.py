"""
Main CLI entry point for Blockforge
"""

import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Optional

import click

from ..core.config import Config
from ..core.observability import setup_logfire
from ..services.block_generation import (
    AnthropicBlockGenerator,
    BlockGenerationError,
    BlockRenderer,
    RefinementController,
    RefinementOptions,
    RenderableBlock,
    Viewport,
    build_block,
    classify,
    compare,
    format_profile_for_prompt,
    sample_styles_from_url,
    with_rate_limit_backoff,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


# ============================================================================
# Block directory helpers
# ============================================================================

def load_block_dir(block_dir: Path) -> RenderableBlock:
    """Read {name}.html / {name}.css / {name}.js from a directory."""
    html_files = sorted(block_dir.glob("*.html"))
    if not html_files:
        raise click.ClickException(f"No .html file found in {block_dir}")

    markup_path = html_files[0]
    name = markup_path.stem
    css_path = block_dir / f"{name}.css"
    js_path = block_dir / f"{name}.js"

    return RenderableBlock(
        name=name,
        markup=markup_path.read_text(encoding="utf-8"),
        stylesheet=css_path.read_text(encoding="utf-8") if css_path.exists() else "",
        behavior=js_path.read_text(encoding="utf-8") if js_path.exists() else "",
    )


def write_block_dir(block: RenderableBlock, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / f"{block.name}.html").write_text(block.markup, encoding="utf-8")
    (out_dir / f"{block.name}.css").write_text(block.stylesheet, encoding="utf-8")
    (out_dir / f"{block.name}.js").write_text(block.behavior, encoding="utf-8")


def read_image_b64(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def write_image_b64(data: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(base64.b64decode(data))


# ============================================================================
# Commands
# ============================================================================

@click.group()
@click.version_option(version='0.1.0')
def cli():
    """
    Blockforge - content blocks from rendered web pages

    Classify a page fragment into a typed content block, build a
    self-contained HTML/CSS/JS bundle from it, and refine the bundle
    against a reference screenshot.
    """
    setup_logfire()


@cli.command('classify')
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--base-url', default=None, help='Base URL for resolving relative image paths')
def classify_command(file: Path, base_url: Optional[str]):
    """
    Classify an HTML fragment and print the content block as JSON.

    Example:
        blockforge classify hero.html --base-url https://example.com/
    """
    content = classify(file.read_text(encoding="utf-8"), base_url=base_url)
    click.echo(json.dumps(content.to_dict(), indent=2))


@cli.command('build')
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('out_dir', type=click.Path(file_okay=False, path_type=Path))
@click.option('--name', default=None, help='Block name (defaults to the detected kind)')
@click.option('--base-url', default=None, help='Base URL for resolving relative image paths')
def build_command(file: Path, out_dir: Path, name: Optional[str], base_url: Optional[str]):
    """
    Classify an HTML fragment and write the generated block files.

    Example:
        blockforge build section.html ./blocks/features --name features
    """
    content = classify(file.read_text(encoding="utf-8"), base_url=base_url)
    click.echo(f"🔍 Detected {content.kind.value} block with {len(content.items)} item(s)")

    block = build_block(content, name=name)
    write_block_dir(block, out_dir)
    click.echo(f"✅ Wrote {block.name}.html/.css/.js to {out_dir}")


@cli.command('render')
@click.argument('block_dir', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument('out_png', type=click.Path(dir_okay=False, path_type=Path))
@click.option('--width', type=int, default=None, help='Viewport width (default: VIEWPORT_WIDTH)')
@click.option('--height', type=int, default=None, help='Viewport height (default: VIEWPORT_HEIGHT)')
def render_command(block_dir: Path, out_png: Path, width: Optional[int], height: Optional[int]):
    """
    Render a block directory to a viewport PNG.

    Example:
        blockforge render ./blocks/features features.png --width 1280
    """
    block = load_block_dir(block_dir)
    viewport = Viewport(
        width=width or Config.VIEWPORT_WIDTH,
        height=height or Config.VIEWPORT_HEIGHT,
    )

    async def _render() -> str:
        async with BlockRenderer(viewport=viewport) as renderer:
            return await renderer.render(block)

    try:
        png_b64 = asyncio.run(_render())
    except BlockGenerationError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    write_image_b64(png_b64, out_png)
    click.echo(f"📸 Rendered {block.name} at {viewport.width}x{viewport.height} -> {out_png}")


@cli.command('compare')
@click.argument('image_a', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('image_b', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--diff-out', type=click.Path(dir_okay=False, path_type=Path), help='Write the diff image here')
@click.option('--threshold', type=float, default=None, help='Per-pixel sensitivity 0-1 (default: PIXEL_MATCH_THRESHOLD)')
def compare_command(image_a: Path, image_b: Path, diff_out: Optional[Path], threshold: Optional[float]):
    """
    Pixel-compare two PNG screenshots and print the result as JSON.

    Example:
        blockforge compare original.png rendered.png --diff-out diff.png
    """
    try:
        result = compare(
            read_image_b64(image_a),
            read_image_b64(image_b),
            threshold=Config.PIXEL_MATCH_THRESHOLD if threshold is None else threshold,
        )
    except BlockGenerationError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    if diff_out:
        write_image_b64(result.diff_image, diff_out)
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command('refine')
@click.argument('reference_png', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('block_dir', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--threshold', type=float, default=None, help='Converged below this diff percentage (default: DIFF_THRESHOLD)')
@click.option('--instruction', default=None, help='Extra guidance for the generation model')
@click.option('--iterations', type=int, default=None, help='Maximum generation calls (default: MAX_REFINE_ITERATIONS)')
@click.option('--out-dir', type=click.Path(file_okay=False, path_type=Path), default=None, help='Where to write the refined block (default: BLOCK_DIR)')
@click.option('--style-url', default=None, help='Live page to sample computed styles from')
@click.option('--style-selector', default=None, help='Region selector on --style-url')
def refine_command(
    reference_png: Path,
    block_dir: Path,
    threshold: Optional[float],
    instruction: Optional[str],
    iterations: Optional[int],
    out_dir: Optional[Path],
    style_url: Optional[str],
    style_selector: Optional[str],
):
    """
    Iteratively refine a block against a reference screenshot.

    Examples:
        blockforge refine original.png ./blocks/features
        blockforge refine original.png ./blocks/features --instruction "Match the button color" --iterations 2
    """
    try:
        Config.validate()
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    block = load_block_dir(block_dir)
    reference = read_image_b64(reference_png)
    options = RefinementOptions(threshold=threshold, instruction=instruction)

    async def _refine():
        async with BlockRenderer() as renderer:
            profile = None
            if style_url and style_selector:
                click.echo(f"🎨 Sampling styles from {style_url}")
                profile = await sample_styles_from_url(renderer.browser, style_url, style_selector)

            generator = with_rate_limit_backoff(AnthropicBlockGenerator(style_profile=profile))
            controller = RefinementController(renderer, generator, options)
            return await controller.refine_iteratively(reference, block, max_iterations=iterations)

    click.echo(f"🔁 Refining {block.name} against {reference_png.name}...")
    try:
        result, state = asyncio.run(_refine())
    except BlockGenerationError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    target = out_dir or block_dir
    write_block_dir(result.block, target)
    if result.rendered_image:
        write_image_b64(result.rendered_image, target / f"{result.block.name}.png")

    click.echo(f"\n{'=' * 60}")
    click.echo(f"📊 Final diff: {result.diff.score:.2f}% after {state.iteration} iteration(s) ({state.phase.value})")
    click.echo(f"📝 {result.notes}")
    if state.error:
        click.echo(f"⚠️  Stopped early: {state.error}")
    click.echo(f"✅ Wrote {result.block.name} to {target}")


@cli.command('sample-styles')
@click.argument('url')
@click.argument('selector')
def sample_styles_command(url: str, selector: str):
    """
    Sample computed styles of a region on a live page.

    Example:
        blockforge sample-styles https://example.com ".features"
    """
    async def _sample():
        async with BlockRenderer() as renderer:
            return await sample_styles_from_url(renderer.browser, url, selector)

    try:
        profile = asyncio.run(_sample())
    except BlockGenerationError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    if profile.is_empty():
        click.echo(f"⚠️  No element matches {selector}")
        return
    click.echo(format_profile_for_prompt(profile))


if __name__ == '__main__':
    cli()
