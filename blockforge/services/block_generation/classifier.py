"""Structural classification of rendered markup fragments.

Recovers a content shape (columns, cards, carousel, hero, accordion, text)
from markup of unknown depth and naming convention. No LLM: every decision
is a deterministic heuristic with weights from heuristics.py.

Pipeline:
1. Parse into an arena tree under a synthetic root
2. Detect the block title (and subtitle)
3. Find the best repeating sibling group (class patterns, then structure)
4. Extract image / heading / description / CTA per item
5. Decide the block kind (carousel > hero > accordion > cards|columns > text)
6. Recover style hints from inline styles
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from . import heuristics as h
from .dom_tree import HEADING_TAGS, DomTree, parse_fragment
from .models import (
    BlockKind,
    ContentBlock,
    ContentItem,
    ImageRef,
    LinkRef,
    StyleHints,
)

logger = logging.getLogger(__name__)


def classify(markup: str, base_url: Optional[str] = None) -> ContentBlock:
    """Classify a markup fragment into a typed ContentBlock.

    Args:
        markup: Rendered HTML fragment (any depth, any authoring tool).
        base_url: Page URL used to resolve relative image/link URLs.

    Returns:
        ContentBlock with exactly one kind. Malformed or empty markup
        degrades to columns/text/unknown instead of raising.
    """
    tree = parse_fragment(markup)

    title_node = _find_title(tree)
    title = tree.clean_text(title_node) if title_node is not None else None
    subtitle = _find_subtitle(tree, title_node) if title_node is not None else None

    group = find_item_group(tree)
    items = [extract_item(tree, node, base_url) for node in group]

    kind = determine_kind(tree, items)
    if kind is BlockKind.HERO and not items:
        items = [extract_item(tree, tree.root, base_url)]

    hints = extract_style_hints(tree, len(items))

    logger.debug(
        f"Classified fragment as {kind.value}: {len(items)} items, "
        f"title={title!r}"
    )

    return ContentBlock(
        kind=kind,
        items=tuple(items),
        style_hints=hints,
        title=title,
        subtitle=subtitle,
    )


# ---------------------------------------------------------------------------
# Title detection
# ---------------------------------------------------------------------------


def _find_title(tree: DomTree) -> Optional[int]:
    for heading in tree.find_all(tree.root, h.TITLE_HEADING_TAGS):
        text = tree.clean_text(heading)
        if not text:
            continue

        class_name = tree.class_name(heading).lower()
        if any(hint in class_name for hint in h.HIDDEN_CLASS_HINTS):
            continue

        if any(hint in class_name for hint in h.TITLE_CLASS_HINTS):
            return heading

        if not _is_nested_in_item(tree, heading) and h.TITLE_MIN_LENGTH < len(text) < h.TITLE_MAX_LENGTH:
            return heading

    return None


def _is_nested_in_item(tree: DomTree, node: int) -> bool:
    for depth, ancestor in enumerate(tree.ancestors(node)):
        if depth >= h.TITLE_MAX_NESTING:
            break
        if h.TITLE_NESTING_RE.search(tree.class_name(ancestor)):
            return True
    return False


def _find_subtitle(tree: DomTree, title_node: int) -> Optional[str]:
    sibling = tree.next_element_sibling(title_node)
    if sibling is None or tree.tag(sibling) not in ("p", "h4", "h5", "h6"):
        return None
    text = tree.clean_text(sibling)
    return text if len(text) > h.SUBTITLE_MIN_LENGTH else None


# ---------------------------------------------------------------------------
# Repeating-group detection
# ---------------------------------------------------------------------------


def find_item_group(tree: DomTree) -> List[int]:
    """Pick the sibling group that most likely holds the repeating items."""
    candidates = [
        node for node in tree.all_elements()
        if any(p.search(tree.class_name(node)) for p in h.CANDIDATE_CLASS_PATTERNS)
    ]

    best: List[int] = []
    best_score = 0
    for members in _group_by_parent(tree, candidates).values():
        if len(members) < h.MIN_GROUP_SIZE:
            continue
        multiplier = h.CONSISTENT_GROUP_MULTIPLIER if has_consistent_structure(tree, members) else 1
        score = len(members) * multiplier
        if score > best_score:
            best_score = score
            best = members

    if len(best) >= h.MIN_GROUP_SIZE:
        return best

    return _find_structural_group(tree)


def _group_by_parent(tree: DomTree, nodes: Sequence[int]) -> Dict[int, List[int]]:
    groups: Dict[int, List[int]] = {}
    for node in nodes:
        parent = tree.parent(node)
        if parent is None:
            continue
        groups.setdefault(parent, []).append(node)
    return groups


def _find_structural_group(tree: DomTree) -> List[int]:
    for tag in h.STRUCTURAL_FALLBACK_TAGS:
        for siblings in _group_by_parent(tree, tree.find_all(tree.root, [tag])).values():
            if h.STRUCTURAL_GROUP_MIN <= len(siblings) <= h.STRUCTURAL_GROUP_MAX:
                if has_consistent_structure(tree, siblings):
                    return siblings
    return []


def structure_signature(tree: DomTree, node: int) -> Tuple[bool, bool, bool, bool]:
    """Presence of (image, heading, paragraph, link) below a node."""
    return (
        tree.has_descendant(node, ("img", "picture"), attribute=h.LAZY_IMAGE_ATTRIBUTE),
        tree.has_descendant(node, HEADING_TAGS),
        tree.has_descendant(node, ("p",)),
        tree.has_descendant(node, ("a",)),
    )


def has_consistent_structure(tree: DomTree, nodes: Sequence[int]) -> bool:
    if len(nodes) < 2:
        return False
    first = structure_signature(tree, nodes[0])
    return all(structure_signature(tree, node) == first for node in nodes[1:])


# ---------------------------------------------------------------------------
# Per-item extraction
# ---------------------------------------------------------------------------


def extract_item(tree: DomTree, node: int, base_url: Optional[str] = None) -> ContentItem:
    """Extract image, heading, description and CTA from one item."""
    heading = None
    heading_level = None
    for heading_node in tree.find_all(node, HEADING_TAGS):
        text = tree.clean_text(heading_node)
        class_name = tree.class_name(heading_node).lower()
        if text and not any(hint in class_name for hint in h.ITEM_HIDDEN_CLASS_HINTS):
            heading = text
            heading_level = int(tree.tag(heading_node)[1])
            break

    descriptions = [
        text for text in (tree.clean_text(p) for p in tree.find_all(node, ["p"]))
        if len(text) > h.MIN_DESCRIPTION_PARAGRAPH_LENGTH
    ]

    cta = None
    for link in tree.find_all(node, ["a"]):
        href = tree.attribute(link, "href")
        text = tree.clean_text(link)
        if href and text and not href.startswith("#") and len(text) > h.MIN_CTA_TEXT_LENGTH:
            cta = LinkRef(text=text, href=resolve_url(href, base_url))
            break

    return ContentItem(
        image=_resolve_image(tree, node, base_url),
        heading=heading,
        heading_level=heading_level,
        description=" ".join(descriptions) if descriptions else None,
        cta=cta,
    )


def _resolve_image(tree: DomTree, node: int, base_url: Optional[str]) -> Optional[ImageRef]:
    # 1. Lazy-load attribute anywhere in the item
    for element in tree.descendants(node):
        src = tree.attribute(element, h.LAZY_IMAGE_ATTRIBUTE)
        if src and not is_placeholder_image(src):
            alt = tree.attribute(element, "data-alt") or tree.attribute(element, "alt") or ""
            return ImageRef(src=resolve_url(src, base_url), alt=alt)

    # 2. <img> src
    for img in tree.find_all(node, ["img"]):
        src = tree.attribute(img, "src") or tree.attribute(img, h.LAZY_IMAGE_ATTRIBUTE) or ""
        if src and not is_placeholder_image(src):
            return ImageRef(src=resolve_url(src, base_url), alt=tree.attribute(img, "alt") or "")

    # 3. Inline background image on the item or below it
    for element in [node, *tree.descendants(node)]:
        match = h.BACKGROUND_URL_RE.search(tree.attribute(element, "style") or "")
        if match:
            return ImageRef(src=resolve_url(match.group(1), base_url), alt="")

    return None


def is_placeholder_image(src: str) -> bool:
    lower = src.lower()
    return any(hint in lower for hint in h.PLACEHOLDER_IMAGE_HINTS)


def resolve_url(url: str, base_url: Optional[str] = None) -> str:
    """Resolve a relative URL against base_url; absolute and data: URLs pass through."""
    if not url or not base_url:
        return url
    if url.startswith(("http://", "https://", "data:")):
        return url
    try:
        return urljoin(base_url, url)
    except ValueError:
        return url


# ---------------------------------------------------------------------------
# Type decision
# ---------------------------------------------------------------------------


def determine_kind(tree: DomTree, items: Sequence[ContentItem]) -> BlockKind:
    """Pick exactly one kind; first matching rule wins."""
    count = len(items)

    if detect_carousel(tree):
        return BlockKind.CAROUSEL

    if count <= 1:
        has_image = tree.has_descendant(tree.root, ("img", "picture"), attribute=h.LAZY_IMAGE_ATTRIBUTE)
        has_heading = tree.has_descendant(tree.root, ("h1", "h2"))
        if has_image and has_heading:
            return BlockKind.HERO

    if count >= 2 and not any(item.image for item in items):
        if all(item.heading for item in items):
            return BlockKind.ACCORDION

    if count >= 2:
        card_score, column_score = score_card_signals(
            class_text=_all_class_text(tree),
            inline_styles=_all_inline_styles(tree),
            items=items,
            wrapper_link_count=_count_wrapper_links(tree),
        )
        return BlockKind.CARDS if card_score > column_score else BlockKind.COLUMNS

    if count == 0:
        if tree.has_descendant(tree.root, ("h1", "h2", "h3", "p")):
            return BlockKind.TEXT
        return BlockKind.UNKNOWN

    return BlockKind.COLUMNS


def detect_carousel(tree: DomTree) -> bool:
    class_text = _all_class_text(tree)
    if any(pattern.search(class_text) for pattern in h.CAROUSEL_CLASS_PATTERNS):
        return True
    if any(hint in class_text for hint in h.CAROUSEL_NAV_CLASS_HINTS):
        return True

    for node in tree.all_elements():
        for name, value in h.CAROUSEL_ATTRIBUTE_VALUES:
            if (tree.attribute(node, name) or "").lower() == value:
                return True
        if any(tree.attribute(node, name) is not None for name in h.CAROUSEL_DATA_ATTRIBUTES):
            return True

    return False


def score_card_signals(
    class_text: str,
    inline_styles: Sequence[str],
    items: Sequence[ContentItem],
    wrapper_link_count: int,
) -> Tuple[int, int]:
    """Score card-ness vs column-ness of a repeating group.

    Args:
        class_text: All class attributes, lowercased and space-joined.
        inline_styles: Inline style attribute values (one per element).
        items: Extracted items of the chosen group.
        wrapper_link_count: Anchors wrapping both an image and a heading.

    Returns:
        (card_score, column_score). Ties mean columns.
    """
    card_score = 0
    column_score = 0

    for pattern, points in h.CARD_CLASS_WEIGHTS:
        if pattern.search(class_text):
            card_score += points
    for pattern, points in h.COLUMN_CLASS_WEIGHTS:
        if pattern.search(class_text):
            column_score += points

    for style in inline_styles:
        style = style.lower()
        for pattern, points in h.INLINE_STYLE_CARD_WEIGHTS:
            if pattern.search(style):
                card_score += points

    item_count = len(items) or 1
    avg_description = sum(len(item.description or "") for item in items) / item_count
    if avg_description < h.SHORT_DESCRIPTION_LENGTH:
        card_score += h.SHORT_DESCRIPTION_CARD_POINTS
    elif avg_description > h.LONG_DESCRIPTION_LENGTH:
        column_score += h.LONG_DESCRIPTION_COLUMN_POINTS

    if wrapper_link_count >= len(items) * h.WRAPPER_LINK_RATIO:
        card_score += h.WRAPPER_LINK_CARD_POINTS

    with_cta = sum(1 for item in items if item.cta)
    if with_cta >= len(items) * h.CTA_RATIO:
        column_score += h.CTA_COLUMN_POINTS

    return card_score, column_score


def _all_class_text(tree: DomTree) -> str:
    return " ".join(
        tree.class_name(node).lower() for node in tree.all_elements() if tree.class_name(node)
    )


def _all_inline_styles(tree: DomTree) -> List[str]:
    return [
        tree.attribute(node, "style") for node in tree.all_elements()
        if tree.attribute(node, "style")
    ]


def _count_wrapper_links(tree: DomTree) -> int:
    return sum(
        1 for link in tree.find_all(tree.root, ["a"])
        if tree.has_descendant(link, ("img", "picture"))
        and tree.has_descendant(link, h.WRAPPER_LINK_HEADING_TAGS)
    )


# ---------------------------------------------------------------------------
# Style hints
# ---------------------------------------------------------------------------


def parse_inline_style(style: str) -> Dict[str, str]:
    """Split an inline style attribute into lowercase property -> value."""
    declarations: Dict[str, str] = {}
    for declaration in style.split(";"):
        if ":" not in declaration:
            continue
        prop, value = declaration.split(":", 1)
        prop = prop.strip().lower()
        value = value.strip()
        if prop and value:
            declarations[prop] = value
    return declarations


def extract_style_hints(tree: DomTree, item_count: int) -> StyleHints:
    """Recover presentation hints from inline styles; last declaration wins."""
    values: Dict[str, str] = {}

    for node in tree.all_elements():
        style = tree.attribute(node, "style")
        if not style:
            continue
        declarations = parse_inline_style(style)
        tag = tree.tag(node)

        background = declarations.get("background-color") or declarations.get("background")
        if background and "url(" not in background:
            values["background_color"] = background

        if "color" in declarations:
            if tag in HEADING_TAGS:
                values["heading_color"] = declarations["color"]
            elif tag == "a":
                values["link_color"] = declarations["color"]
            else:
                values["text_color"] = declarations["color"]

        if "font-family" in declarations:
            key = "heading_font" if tag in HEADING_TAGS else "body_font"
            values[key] = declarations["font-family"]

        for prop, key in (
            ("padding", "padding"),
            ("gap", "gap"),
            ("border-radius", "border_radius"),
            ("box-shadow", "box_shadow"),
        ):
            if prop in declarations:
                values[key] = declarations[prop]

    return StyleHints(column_count=max(item_count, 1), **values)
