"""Candidate Renderer: block bundle -> viewport PNG via headless Chromium.

Each render gets its own browser context and page, closed before the call
returns or raises. The browser itself can be shared across renders
(BlockRenderer owns it when none is supplied).
"""

import asyncio
import base64
import html
import json
import logging
from typing import Optional

from playwright.async_api import Browser, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ...core.config import Config
from ...core.observability import get_logfire
from .errors import RenderError, RenderTimeoutError
from .models import RenderableBlock, Viewport

logger = logging.getLogger(__name__)

RESET_STYLES = """*, *::before, *::after { box-sizing: border-box; }
html, body { margin: 0; padding: 0; }
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; background: #fff; }
img { max-width: 100%; }"""

# Resolves once every <img> has loaded, errored or hit its own timeout
WAIT_FOR_IMAGES_JS = """async (timeoutMs) => {
  const images = Array.from(document.images);
  await Promise.all(images.map((img) => {
    if (img.complete) return Promise.resolve();
    return new Promise((resolve) => {
      const timer = setTimeout(resolve, timeoutMs);
      const done = () => { clearTimeout(timer); resolve(); };
      img.addEventListener('load', done, { once: true });
      img.addEventListener('error', done, { once: true });
    });
  }));
  return images.length;
}"""

# Overall image wait is bounded by this multiple of the per-image timeout
IMAGE_WAIT_OVERALL_FACTOR = 2


def build_harness_document(block: RenderableBlock) -> str:
    """Wrap a block bundle in a minimal standalone document.

    The behavior runs as a module script; if it defines decorate(), it is
    called once with the first element matching the block's root selector.
    """
    root_selector = json.dumps(block.root_selector)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{html.escape(block.name)}</title>
<style>
{RESET_STYLES}
</style>
<style>
{block.stylesheet}
</style>
</head>
<body>
<main>
{block.markup}
</main>
<script type="module">
{block.behavior}

if (typeof decorate === 'function') {{
  const root = document.querySelector({root_selector});
  if (root) decorate(root);
}}
</script>
</body>
</html>
"""


class BlockRenderer:
    """Renders RenderableBlocks to base64 PNG screenshots.

    Usage:
        async with BlockRenderer() as renderer:
            png_b64 = await renderer.render(block)
    """

    def __init__(
        self,
        browser: Optional[Browser] = None,
        viewport: Optional[Viewport] = None,
        navigation_timeout_ms: Optional[int] = None,
        image_timeout_ms: Optional[int] = None,
        settle_delay_ms: Optional[int] = None,
    ):
        self._browser = browser
        self._owns_browser = browser is None
        self._playwright = None
        self.viewport = viewport or Config.viewport()
        self.navigation_timeout_ms = navigation_timeout_ms or Config.NAVIGATION_TIMEOUT_MS
        self.image_timeout_ms = image_timeout_ms or Config.IMAGE_LOAD_TIMEOUT_MS
        self.settle_delay_ms = Config.SETTLE_DELAY_MS if settle_delay_ms is None else settle_delay_ms
        self._lf = get_logfire()

    @property
    def browser(self) -> Optional[Browser]:
        return self._browser

    async def __aenter__(self) -> "BlockRenderer":
        if self._browser is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=True)
            self._owns_browser = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_browser and self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def render(self, block: RenderableBlock, viewport: Optional[Viewport] = None) -> str:
        """Render a block in a fresh page and screenshot the viewport.

        Args:
            block: Bundle to render.
            viewport: Page size; defaults to the renderer's viewport.

        Returns:
            Base64-encoded PNG of the visible viewport.

        Raises:
            RenderTimeoutError: Load or image wait exceeded its bound.
            RenderError: The browser page or context failed mid-render.
        """
        if self._browser is None:
            raise RuntimeError("BlockRenderer has no browser; use 'async with BlockRenderer()'")

        viewport = viewport or self.viewport
        document = build_harness_document(block)

        with self._lf.span("render_block", block=block.name, width=viewport.width, height=viewport.height):
            context = None
            page = None
            try:
                context = await self._browser.new_context(
                    viewport={"width": viewport.width, "height": viewport.height}
                )
                page = await context.new_page()
                page.on("pageerror", lambda error: logger.warning(f"Block script error in '{block.name}': {error}"))

                await page.set_content(
                    document, wait_until="networkidle", timeout=self.navigation_timeout_ms
                )
                await self._wait_for_images(page, block.name)
                if self.settle_delay_ms:
                    await asyncio.sleep(self.settle_delay_ms / 1000)

                screenshot = await page.screenshot(type="png", full_page=False)
            except PlaywrightTimeoutError as e:
                self._lf.warning("Render timed out for {block}", block=block.name)
                raise RenderTimeoutError(f"Rendering '{block.name}' timed out: {e}") from e
            except PlaywrightError as e:
                self._lf.warning("Render failed for {block}", block=block.name)
                raise RenderError(f"Rendering '{block.name}' failed: {e}") from e
            finally:
                await _close_target(page, block.name)
                await _close_target(context, block.name)

        logger.info(f"Rendered '{block.name}' at {viewport.width}x{viewport.height} ({len(screenshot)} bytes)")
        return base64.b64encode(screenshot).decode("ascii")

    async def _wait_for_images(self, page, block_name: str) -> None:
        overall = self.image_timeout_ms * IMAGE_WAIT_OVERALL_FACTOR / 1000
        try:
            count = await asyncio.wait_for(
                page.evaluate(WAIT_FOR_IMAGES_JS, self.image_timeout_ms), timeout=overall
            )
        except asyncio.TimeoutError as e:
            raise RenderTimeoutError(
                f"Images in '{block_name}' did not settle within {overall:.1f}s"
            ) from e
        logger.debug(f"Waited for {count} image(s) in '{block_name}'")


async def _close_target(target, block_name: str) -> None:
    """Close a page or context; an already-closed browser is not an error here."""
    if target is None:
        return
    try:
        await target.close()
    except PlaywrightError as e:
        logger.debug(f"Ignoring close failure after rendering '{block_name}': {e}")


async def render(
    block: RenderableBlock,
    viewport: Optional[Viewport] = None,
    browser: Optional[Browser] = None,
) -> str:
    """One-shot render; launches Chromium when no browser is supplied."""
    if browser is not None:
        return await BlockRenderer(browser=browser).render(block, viewport)

    async with BlockRenderer() as renderer:
        return await renderer.render(block, viewport)
