"""Style Profile Sampler: computed styles of a live page region, per role.

One page.evaluate() collects raw computed values for a fixed property
allow-list; filtering of default values happens here in Python. The profile
is advisory input for generation prompts, so a missing region yields an
empty profile rather than an error.
"""

import logging
from typing import Dict, List, Optional

from playwright.async_api import Browser, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ...core.config import Config
from ...core.observability import get_logfire
from .errors import RenderTimeoutError
from .models import STYLE_ROLES, StyleProfile, Viewport

logger = logging.getLogger(__name__)

LAYOUT_PROPERTIES = [
    "display", "flex-direction", "flex-wrap", "justify-content", "align-items",
    "grid-template-columns", "grid-template-rows", "gap", "row-gap", "column-gap",
]

SPACING_PROPERTIES = [
    "padding", "padding-top", "padding-right", "padding-bottom", "padding-left",
    "margin", "margin-top", "margin-right", "margin-bottom", "margin-left",
]

TYPOGRAPHY_PROPERTIES = [
    "font-family", "font-size", "font-weight", "line-height", "letter-spacing",
    "color", "text-align", "text-transform", "text-decoration",
]

VISUAL_PROPERTIES = [
    "background-color", "background-image", "background-size", "background-position",
    "border", "border-radius", "box-shadow", "opacity", "object-fit",
]

SIZE_PROPERTIES = [
    "width", "height", "min-width", "max-width", "min-height", "max-height",
]

ALL_PROPERTIES = (
    LAYOUT_PROPERTIES + SPACING_PROPERTIES + TYPOGRAPHY_PROPERTIES
    + VISUAL_PROPERTIES + SIZE_PROPERTIES
)

DEFAULT_VALUES = frozenset(["none", "normal", "auto", "0px", ""])

# Per-role caps on sampled elements
SAMPLE_LIMITS = {
    "card": 4,
    "heading": 3,
    "image": 3,
    "text": 3,
    "link": 3,
}
MIN_TEXT_LENGTH = 20  # exclusive

# Card-like: bigger than 100x100 but narrower than 60% / shorter than 80%
# of the container
SAMPLE_STYLES_JS = """([selector, props, limits, minText]) => {
  const container = document.querySelector(selector);
  if (!container) return null;

  const raw = (el) => {
    const computed = window.getComputedStyle(el);
    const values = {};
    for (const prop of props) values[prop] = computed.getPropertyValue(prop);
    return values;
  };

  const box = container.getBoundingClientRect();
  const isCardLike = (el) => {
    const rect = el.getBoundingClientRect();
    return rect.width > 100 && rect.height > 100 &&
      rect.width < box.width * 0.6 && rect.height < box.height * 0.8;
  };

  const cards = [];
  const seen = new Set();
  const cardSelectors = [
    ':scope > div', ':scope > article', ':scope > li', ':scope > a',
    '[class*="card"]', '[class*="item"]', '[class*="tile"]',
  ];
  for (const cardSelector of cardSelectors) {
    for (const el of container.querySelectorAll(cardSelector)) {
      if (cards.length >= limits.card) break;
      if (!seen.has(el) && isCardLike(el)) {
        seen.add(el);
        cards.push(raw(el));
      }
    }
  }

  const take = (query, limit, accept) => {
    const out = [];
    for (const el of container.querySelectorAll(query)) {
      if (out.length >= limit) break;
      if (!accept || accept(el)) out.push(raw(el));
    }
    return out;
  };

  return {
    container: [raw(container)],
    card: cards,
    heading: take('h1, h2, h3, h4, h5, h6', limits.heading),
    image: take('img, picture', limits.image),
    text: take('p, span:not(:empty)', limits.text,
      (el) => (el.textContent || '').trim().length > minText),
    link: take('a, button', limits.link),
  };
}"""


def drop_default_values(values: Dict[str, str]) -> Dict[str, str]:
    """Keep only meaningful (non-default) computed values."""
    return {
        prop: value.strip()
        for prop, value in values.items()
        if value is not None and value.strip() not in DEFAULT_VALUES
    }


def profile_from_raw(raw: Optional[Dict[str, List[Dict[str, str]]]]) -> StyleProfile:
    profile = StyleProfile()
    if not raw:
        return profile
    for role in STYLE_ROLES:
        profile.roles[role] = [drop_default_values(sample) for sample in raw.get(role) or []]
    return profile


async def sample_styles(page: Page, selector: str) -> StyleProfile:
    """Sample computed styles of the region matching selector.

    Args:
        page: Live page, already navigated and loaded.
        selector: CSS selector of the region root.

    Returns:
        StyleProfile; empty when the selector matches nothing.
    """
    raw = await page.evaluate(
        SAMPLE_STYLES_JS, [selector, ALL_PROPERTIES, SAMPLE_LIMITS, MIN_TEXT_LENGTH]
    )
    if raw is None:
        logger.info(f"No element matches '{selector}', returning empty style profile")
        return StyleProfile()

    profile = profile_from_raw(raw)
    counts = ", ".join(f"{role}={len(profile.roles[role])}" for role in STYLE_ROLES)
    logger.info(f"Sampled styles for '{selector}': {counts}")
    return profile


async def sample_styles_from_url(
    browser: Browser,
    url: str,
    selector: str,
    viewport: Optional[Viewport] = None,
    navigation_timeout_ms: Optional[int] = None,
) -> StyleProfile:
    """Open url in an isolated page and sample the region's styles.

    Raises:
        RenderTimeoutError: Navigation did not reach network idle in time.
    """
    viewport = viewport or Config.viewport()
    timeout_ms = navigation_timeout_ms or Config.NAVIGATION_TIMEOUT_MS
    lf = get_logfire()

    with lf.span("sample_styles", url=url, selector=selector):
        context = await browser.new_context(
            viewport={"width": viewport.width, "height": viewport.height}
        )
        try:
            page = await context.new_page()
            try:
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            except PlaywrightTimeoutError as e:
                raise RenderTimeoutError(f"Loading {url} timed out after {timeout_ms}ms") from e
            return await sample_styles(page, selector)
        finally:
            await context.close()


# ---------------------------------------------------------------------------
# Prompt formatting
# ---------------------------------------------------------------------------

PROMPT_SECTIONS = (
    ("container", "Container Layout",
     ["display", "flex-direction", "grid-template-columns", "gap", "padding"]),
    ("card", "Card/Item Styles",
     ["background-color", "border-radius", "box-shadow", "padding"]),
    ("heading", "Heading Styles",
     ["font-family", "font-size", "font-weight", "color", "text-align"]),
    ("image", "Image Styles",
     ["width", "height", "border-radius", "object-fit"]),
    ("text", "Body Text Styles",
     ["font-family", "font-size", "color", "line-height", "text-align"]),
    ("link", "Button/CTA Styles (USE THESE EXACT COLORS)",
     ["background-color", "color", "border-radius", "padding", "border", "font-weight", "font-size"]),
)


def format_profile_for_prompt(profile: StyleProfile) -> str:
    """Render the first sample of each role as prompt text."""
    lines = ["## Extracted CSS Styles from Original", ""]
    for role, heading, priority in PROMPT_SECTIONS:
        samples = profile.roles.get(role) or []
        if not samples and role != "container":
            continue
        lines.append(f"### {heading}")
        lines.append(_format_styles(profile.primary(role), priority))
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _format_styles(styles: Dict[str, str], priority: List[str]) -> str:
    lines = [f"  {prop}: {styles[prop]}" for prop in priority if styles.get(prop)]
    lines.extend(f"  {prop}: {value}" for prop, value in styles.items() if prop not in priority)
    return "\n".join(lines) if lines else "  (no significant styles detected)"
