"""Deterministic ContentBlock -> RenderableBlock generation.

No LLM involved: markup, stylesheet and behavior come from per-kind
templates. Text is escaped; image and link URLs are copied verbatim from
the content model, never invented or dropped.

Markup follows the block table convention: a root div.<name> whose
children are rows, each row holding cell divs. The behavior exports a
decorate(block) routine that the renderer calls on the root.
"""

import html
import logging
import re
from typing import Callable, Dict, List, Optional

from .models import BlockKind, ContentBlock, ContentItem, RenderableBlock, StyleHints

logger = logging.getLogger(__name__)

DEFAULT_GAP = "24px"
DEFAULT_PADDING = "0"
MAX_GRID_COLUMNS = 4


def build_block(content: ContentBlock, name: Optional[str] = None) -> RenderableBlock:
    """Build a renderable bundle from a classified content block.

    Args:
        content: Output of classify().
        name: Block name; defaults to the block kind.

    Returns:
        RenderableBlock whose root selector is ".<name>".
    """
    block_name = make_block_name(name or content.kind.value)
    markup = build_markup(content, block_name)
    stylesheet = _CSS_TEMPLATES.get(content.kind, _css_default)(block_name, content.style_hints)
    behavior = _JS_TEMPLATES.get(content.kind, _JS_DEFAULT).replace("__BLOCK__", block_name)

    logger.info(f"Built block '{block_name}' ({content.kind.value}, {len(content.items)} rows)")
    return RenderableBlock(name=block_name, markup=markup, stylesheet=stylesheet, behavior=behavior)


def make_block_name(raw: str) -> str:
    """Slugify into a CSS-class-safe block name."""
    slug = re.sub(r"[^a-z0-9]+", "-", raw.lower()).strip("-")
    if not slug or slug == BlockKind.UNKNOWN.value:
        return "block"
    if slug[0].isdigit():
        slug = f"block-{slug}"
    return slug


# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------


def build_markup(content: ContentBlock, block_name: str) -> str:
    parts: List[str] = []
    if content.title:
        parts.append(f'<h2 class="{block_name}-title">{_esc(content.title)}</h2>')
    if content.subtitle:
        parts.append(f'<p class="{block_name}-subtitle">{_esc(content.subtitle)}</p>')

    heading_first = content.kind in (BlockKind.ACCORDION, BlockKind.TABS)
    rows = [_render_row(item, heading_first) for item in content.items]
    rows = [row for row in rows if row]
    body = "\n".join(rows)
    parts.append(f'<div class="{block_name}">\n{body}\n</div>' if body else f'<div class="{block_name}"></div>')
    return "\n".join(parts)


def _render_row(item: ContentItem, heading_first: bool) -> str:
    image_html = _render_image(item)
    heading_html = _render_heading(item)
    text_html = f"<p>{_esc(item.description)}</p>" if item.description else ""
    cta_html = _render_cta(item)

    if heading_first:
        cells = [heading_html, image_html + text_html + cta_html]
    else:
        cells = [image_html, heading_html + text_html + cta_html]

    rendered = [f"    <div>{cell}</div>" for cell in cells if cell]
    if not rendered:
        return ""
    return "  <div>\n" + "\n".join(rendered) + "\n  </div>"


def _render_image(item: ContentItem) -> str:
    if not item.image:
        return ""
    return f'<picture><img src="{_esc(item.image.src)}" alt="{_esc(item.image.alt)}"></picture>'


def _render_heading(item: ContentItem) -> str:
    if not item.heading:
        return ""
    level = item.heading_level or 3
    return f"<h{level}>{_esc(item.heading)}</h{level}>"


def _render_cta(item: ContentItem) -> str:
    if not item.cta:
        return ""
    return (
        f'<p class="button-container"><a href="{_esc(item.cta.href)}" class="button">'
        f"{_esc(item.cta.text)}</a></p>"
    )


def _esc(text: str) -> str:
    return html.escape(text, quote=True)


# ---------------------------------------------------------------------------
# Stylesheets
# ---------------------------------------------------------------------------


def _base_rules(name: str, hints: StyleHints) -> str:
    declarations = []
    if hints.background_color:
        declarations.append(f"  background-color: {hints.background_color};")
    if hints.text_color:
        declarations.append(f"  color: {hints.text_color};")
    if hints.body_font:
        declarations.append(f"  font-family: {hints.body_font};")
    declarations.append(f"  padding: {hints.padding or DEFAULT_PADDING};")

    rules = [f".{name} {{\n" + "\n".join(declarations) + "\n}"]

    heading = []
    if hints.heading_color:
        heading.append(f"  color: {hints.heading_color};")
    if hints.heading_font:
        heading.append(f"  font-family: {hints.heading_font};")
    if heading:
        rules.append(
            f".{name} h1, .{name} h2, .{name} h3, .{name} h4, .{name}-title {{\n"
            + "\n".join(heading) + "\n}"
        )

    if hints.link_color:
        rules.append(f".{name} a {{\n  color: {hints.link_color};\n}}")

    rules.append(f".{name} img {{\n  max-width: 100%;\n  height: auto;\n  display: block;\n}}")
    return "\n\n".join(rules)


def _item_surface(hints: StyleHints) -> str:
    lines = []
    if hints.border_radius:
        lines.append(f"  border-radius: {hints.border_radius};")
    if hints.box_shadow:
        lines.append(f"  box-shadow: {hints.box_shadow};")
    return "\n".join(lines)


def _css_cards(name: str, hints: StyleHints) -> str:
    columns = min(max(hints.column_count, 1), MAX_GRID_COLUMNS)
    surface = _item_surface(hints) or "  border-radius: 8px;\n  box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);"
    return f"""{_base_rules(name, hints)}

.{name} {{
  display: grid;
  grid-template-columns: repeat({columns}, 1fr);
  gap: {hints.gap or DEFAULT_GAP};
}}

.{name}-card {{
  overflow: hidden;
  background-color: #fff;
{surface}
}}

.{name}-card-content {{
  padding: 16px;
}}

@media (max-width: 900px) {{
  .{name} {{
    grid-template-columns: 1fr;
  }}
}}
"""


def _css_columns(name: str, hints: StyleHints) -> str:
    surface = _item_surface(hints)
    column_rule = f".{name}-column {{\n  flex: 1;\n{surface}\n}}" if surface else f".{name}-column {{\n  flex: 1;\n}}"
    return f"""{_base_rules(name, hints)}

.{name} {{
  display: flex;
  flex-direction: column;
  gap: {hints.gap or DEFAULT_GAP};
}}

{column_rule}

@media (min-width: 900px) {{
  .{name} {{
    flex-direction: row;
  }}
}}
"""


def _css_carousel(name: str, hints: StyleHints) -> str:
    return f"""{_base_rules(name, hints)}

.{name} {{
  position: relative;
  overflow: hidden;
}}

.{name}-track {{
  display: flex;
  transition: transform 0.5s ease-in-out;
}}

.{name}-slide {{
  flex: 0 0 100%;
  display: flex;
  gap: {hints.gap or DEFAULT_GAP};
}}

.{name}-slide > div {{
  flex: 1;
}}

.{name}-nav {{
  position: absolute;
  top: 50%;
  transform: translateY(-50%);
  width: 48px;
  height: 48px;
  border: none;
  border-radius: 50%;
  background: rgba(255, 255, 255, 0.9);
  cursor: pointer;
}}

.{name}-nav--prev {{
  left: 1rem;
}}

.{name}-nav--next {{
  right: 1rem;
}}

.{name}-dots {{
  display: flex;
  justify-content: center;
  gap: 0.5rem;
  padding: 1rem;
}}

.{name}-dot {{
  width: 12px;
  height: 12px;
  border: none;
  border-radius: 50%;
  background: #ccc;
}}

.{name}-dot.active {{
  background: #333;
}}
"""


def _css_hero(name: str, hints: StyleHints) -> str:
    return f"""{_base_rules(name, hints)}

.{name} > div {{
  display: flex;
  align-items: center;
  gap: {hints.gap or DEFAULT_GAP};
}}

.{name} > div > div {{
  flex: 1;
}}

.{name}-with-bg {{
  position: relative;
}}
"""


def _css_accordion(name: str, hints: StyleHints) -> str:
    return f"""{_base_rules(name, hints)}

.{name}-item {{
  border-bottom: 1px solid #e0e0e0;
}}

.{name}-header {{
  display: flex;
  justify-content: space-between;
  width: 100%;
  padding: 1rem 0;
  border: none;
  background: none;
  font: inherit;
  text-align: left;
  cursor: pointer;
}}

.{name}-body {{
  display: none;
  padding-bottom: 1rem;
}}

.{name}-item.open .{name}-body {{
  display: block;
}}
"""


def _css_tabs(name: str, hints: StyleHints) -> str:
    return f"""{_base_rules(name, hints)}

.{name}-tablist {{
  display: flex;
  gap: {hints.gap or DEFAULT_GAP};
  border-bottom: 1px solid #e0e0e0;
}}

.{name}-tab {{
  padding: 0.75rem 1rem;
  border: none;
  background: none;
  font: inherit;
  cursor: pointer;
}}

.{name}-tab.active {{
  border-bottom: 2px solid currentColor;
}}

.{name}-panel {{
  display: none;
  padding: 1rem 0;
}}

.{name}-panel.active {{
  display: block;
}}
"""


def _css_default(name: str, hints: StyleHints) -> str:
    return f"""{_base_rules(name, hints)}

.{name}-row {{
  display: flex;
  gap: {hints.gap or DEFAULT_GAP};
}}

.{name}-cell {{
  flex: 1;
}}
"""


_CSS_TEMPLATES: Dict[BlockKind, Callable[[str, StyleHints], str]] = {
    BlockKind.CARDS: _css_cards,
    BlockKind.COLUMNS: _css_columns,
    BlockKind.CAROUSEL: _css_carousel,
    BlockKind.HERO: _css_hero,
    BlockKind.ACCORDION: _css_accordion,
    BlockKind.TABS: _css_tabs,
}


# ---------------------------------------------------------------------------
# Behavior (decorate routines); __BLOCK__ is replaced by the block name
# ---------------------------------------------------------------------------

_JS_CAROUSEL = """export default function decorate(block) {
  const rows = [...block.children];
  if (rows.length === 0) return;

  const track = document.createElement('div');
  track.className = '__BLOCK__-track';
  rows.forEach((row) => {
    row.classList.add('__BLOCK__-slide');
    track.appendChild(row);
  });

  const prev = document.createElement('button');
  prev.className = '__BLOCK__-nav __BLOCK__-nav--prev';
  prev.setAttribute('aria-label', 'Previous slide');
  prev.textContent = '\\u276E';

  const next = document.createElement('button');
  next.className = '__BLOCK__-nav __BLOCK__-nav--next';
  next.setAttribute('aria-label', 'Next slide');
  next.textContent = '\\u276F';

  const dots = document.createElement('div');
  dots.className = '__BLOCK__-dots';
  rows.forEach((_, index) => {
    const dot = document.createElement('button');
    dot.className = '__BLOCK__-dot' + (index === 0 ? ' active' : '');
    dot.setAttribute('aria-label', `Go to slide ${index + 1}`);
    dot.dataset.slide = String(index);
    dots.appendChild(dot);
  });

  block.replaceChildren(track, prev, next, dots);

  let current = 0;
  function goTo(index) {
    current = (index + rows.length) % rows.length;
    track.style.transform = `translateX(-${current * 100}%)`;
    dots.querySelectorAll('.__BLOCK__-dot').forEach((dot, i) => {
      dot.classList.toggle('active', i === current);
    });
  }

  prev.addEventListener('click', () => goTo(current - 1));
  next.addEventListener('click', () => goTo(current + 1));
  dots.addEventListener('click', (e) => {
    const dot = e.target.closest('.__BLOCK__-dot');
    if (dot) goTo(parseInt(dot.dataset.slide, 10));
  });
}
"""

_JS_CARDS = """export default function decorate(block) {
  [...block.children].forEach((row) => {
    row.classList.add('__BLOCK__-card');
    const cells = [...row.children];
    cells.forEach((cell) => {
      if (cell.querySelector('picture, img') && cell.children.length === 1) {
        cell.classList.add('__BLOCK__-card-image');
      } else {
        cell.classList.add('__BLOCK__-card-content');
      }
    });
  });
}
"""

_JS_COLUMNS = """export default function decorate(block) {
  const columns = [...block.children];
  block.classList.add(`__BLOCK__-${columns.length}-cols`);
  columns.forEach((col) => {
    col.classList.add('__BLOCK__-column');
  });
}
"""

_JS_HERO = """export default function decorate(block) {
  const row = block.children[0];
  if (!row) return;
  const cells = [...row.children];
  if (cells[0]) cells[0].classList.add('__BLOCK__-image');
  if (cells[1]) cells[1].classList.add('__BLOCK__-content');
  if (cells[0] && cells[0].querySelector('img')) {
    block.classList.add('__BLOCK__-with-bg');
  }
}
"""

_JS_ACCORDION = """export default function decorate(block) {
  [...block.children].forEach((row) => {
    const [titleCell, bodyCell] = [...row.children];
    row.className = '__BLOCK__-item';

    const header = document.createElement('button');
    header.className = '__BLOCK__-header';
    header.setAttribute('aria-expanded', 'false');
    header.textContent = titleCell ? titleCell.textContent.trim() : '';

    const body = document.createElement('div');
    body.className = '__BLOCK__-body';
    if (bodyCell) body.append(...bodyCell.childNodes);

    row.replaceChildren(header, body);
    header.addEventListener('click', () => {
      const expanded = header.getAttribute('aria-expanded') === 'true';
      header.setAttribute('aria-expanded', String(!expanded));
      row.classList.toggle('open', !expanded);
    });
  });
}
"""

_JS_TABS = """export default function decorate(block) {
  const rows = [...block.children];
  if (rows.length === 0) return;

  const tabList = document.createElement('div');
  tabList.className = '__BLOCK__-tablist';
  tabList.setAttribute('role', 'tablist');
  const panels = document.createElement('div');
  panels.className = '__BLOCK__-panels';

  rows.forEach((row, index) => {
    const [titleCell, bodyCell] = [...row.children];
    const tab = document.createElement('button');
    tab.className = '__BLOCK__-tab' + (index === 0 ? ' active' : '');
    tab.setAttribute('role', 'tab');
    tab.dataset.tab = String(index);
    tab.textContent = titleCell ? titleCell.textContent.trim() : `Tab ${index + 1}`;
    tabList.appendChild(tab);

    const panel = document.createElement('div');
    panel.className = '__BLOCK__-panel' + (index === 0 ? ' active' : '');
    panel.setAttribute('role', 'tabpanel');
    if (bodyCell) panel.append(...bodyCell.childNodes);
    panels.appendChild(panel);
  });

  block.replaceChildren(tabList, panels);
  tabList.addEventListener('click', (e) => {
    const tab = e.target.closest('.__BLOCK__-tab');
    if (!tab) return;
    const index = parseInt(tab.dataset.tab, 10);
    tabList.querySelectorAll('.__BLOCK__-tab').forEach((t, i) => t.classList.toggle('active', i === index));
    panels.querySelectorAll('.__BLOCK__-panel').forEach((p, i) => p.classList.toggle('active', i === index));
  });
}
"""

_JS_DEFAULT = """export default function decorate(block) {
  [...block.children].forEach((row) => {
    row.classList.add('__BLOCK__-row');
    [...row.children].forEach((cell, index) => {
      cell.classList.add('__BLOCK__-cell', `__BLOCK__-cell-${index + 1}`);
    });
  });
}
"""

_JS_TEMPLATES: Dict[BlockKind, str] = {
    BlockKind.CAROUSEL: _JS_CAROUSEL,
    BlockKind.CARDS: _JS_CARDS,
    BlockKind.COLUMNS: _JS_COLUMNS,
    BlockKind.HERO: _JS_HERO,
    BlockKind.ACCORDION: _JS_ACCORDION,
    BlockKind.TABS: _JS_TABS,
}
