"""Arena-backed element tree for markup fragments.

Nodes live in a flat list and refer to each other by integer index; the
parent link is a plain lookup, not ownership. Node indices grow in document
order, so sorting by index is sorting by position in the source.

All classifier logic goes through the small tree-walk interface on
DomTree (children, parent, attribute, text) plus a few derived helpers.
"""

import logging
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

ROOT_TAG = "#root"
TEXT_TAG = "#text"

VOID_ELEMENTS = frozenset([
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr",
])

# Opening one of these implicitly closes an open <p>
_CLOSES_PARAGRAPH = frozenset([
    "address", "article", "aside", "blockquote", "details", "div", "dl",
    "fieldset", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5",
    "h6", "header", "hr", "main", "nav", "ol", "p", "pre", "section",
    "table", "ul",
])

# Opening the key tag closes any open element from its set (omitted end tags)
_IMPLICITLY_CLOSES = {
    "li": frozenset(["li"]),
    "td": frozenset(["td", "th"]),
    "th": frozenset(["td", "th"]),
    "tr": frozenset(["td", "th", "tr"]),
    "tbody": frozenset(["td", "th", "tr", "thead", "tbody", "tfoot"]),
    "tfoot": frozenset(["td", "th", "tr", "thead", "tbody"]),
    "dt": frozenset(["dt", "dd"]),
    "dd": frozenset(["dt", "dd"]),
    "option": frozenset(["option"]),
}

_NON_TEXT_CONTAINERS = frozenset(["script", "style", "template", "noscript"])

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


@dataclass
class DomNode:
    index: int
    tag: str
    parent: Optional[int]
    attrs: Dict[str, str] = field(default_factory=dict)
    child_indices: List[int] = field(default_factory=list)
    data: str = ""  # text nodes only


class DomTree:
    """Flat node arena with a synthetic root at index 0."""

    root = 0

    def __init__(self) -> None:
        self.nodes: List[DomNode] = [DomNode(index=0, tag=ROOT_TAG, parent=None)]

    # -- construction -------------------------------------------------------

    def _append(self, parent: int, tag: str, attrs: Optional[Dict[str, str]] = None, data: str = "") -> int:
        index = len(self.nodes)
        self.nodes.append(DomNode(index=index, tag=tag, parent=parent, attrs=attrs or {}, data=data))
        self.nodes[parent].child_indices.append(index)
        return index

    # -- tree-walk interface ------------------------------------------------

    def children(self, node: int) -> List[int]:
        """Element children in document order (text nodes skipped)."""
        return [c for c in self.nodes[node].child_indices if self.nodes[c].tag != TEXT_TAG]

    def parent(self, node: int) -> Optional[int]:
        return self.nodes[node].parent

    def attribute(self, node: int, name: str) -> Optional[str]:
        return self.nodes[node].attrs.get(name)

    def text(self, node: int) -> str:
        """Concatenated descendant text, script/style content excluded."""
        parts: List[str] = []
        self._collect_text(node, parts)
        return "".join(parts)

    # -- derived helpers ----------------------------------------------------

    def tag(self, node: int) -> str:
        return self.nodes[node].tag

    def class_name(self, node: int) -> str:
        return self.attribute(node, "class") or ""

    def clean_text(self, node: int) -> str:
        """Text with whitespace runs collapsed and ends trimmed."""
        return " ".join(self.text(node).split())

    def descendants(self, node: int) -> Iterator[int]:
        """Element descendants in document order, excluding node itself.

        Walks with an explicit stack, so nesting depth is unbounded.
        """
        stack = list(reversed(self.children(node)))
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.children(current)))

    def find_all(self, node: int, tags: Iterable[str]) -> List[int]:
        wanted = frozenset(tags)
        return [d for d in self.descendants(node) if self.nodes[d].tag in wanted]

    def find_first(self, node: int, tags: Iterable[str]) -> Optional[int]:
        wanted = frozenset(tags)
        for d in self.descendants(node):
            if self.nodes[d].tag in wanted:
                return d
        return None

    def has_descendant(self, node: int, tags: Iterable[str] = (), attribute: Optional[str] = None) -> bool:
        wanted = frozenset(tags)
        for d in self.descendants(node):
            if self.nodes[d].tag in wanted:
                return True
            if attribute is not None and attribute in self.nodes[d].attrs:
                return True
        return False

    def ancestors(self, node: int) -> Iterator[int]:
        """Ancestors from nearest outward, stopping before the synthetic root."""
        current = self.parent(node)
        while current is not None and current != self.root:
            yield current
            current = self.parent(current)

    def next_element_sibling(self, node: int) -> Optional[int]:
        parent = self.parent(node)
        if parent is None:
            return None
        siblings = self.children(parent)
        position = siblings.index(node)
        return siblings[position + 1] if position + 1 < len(siblings) else None

    def all_elements(self) -> Iterator[int]:
        return self.descendants(self.root)

    def _collect_text(self, node: int, parts: List[str]) -> None:
        stack = list(reversed(self.nodes[node].child_indices))
        while stack:
            child_node = self.nodes[stack.pop()]
            if child_node.tag == TEXT_TAG:
                parts.append(child_node.data)
            elif child_node.tag not in _NON_TEXT_CONTAINERS:
                stack.extend(reversed(child_node.child_indices))


class _TreeBuilder(HTMLParser):
    """Tolerant HTMLParser feeding a DomTree."""

    def __init__(self, tree: DomTree):
        super().__init__(convert_charrefs=True)
        self.tree = tree
        self._stack: List[int] = [tree.root]

    @property
    def _current(self) -> int:
        return self._stack[-1]

    def handle_starttag(self, tag, attrs):
        if tag in _CLOSES_PARAGRAPH and self.tree.tag(self._current) == "p":
            self._stack.pop()
        closes = _IMPLICITLY_CLOSES.get(tag)
        while closes and len(self._stack) > 1 and self.tree.tag(self._current) in closes:
            self._stack.pop()

        attrs_dict = {name: (value if value is not None else "") for name, value in attrs}
        node = self.tree._append(self._current, tag, attrs_dict)
        if tag not in VOID_ELEMENTS:
            self._stack.append(node)

    def handle_startendtag(self, tag, attrs):
        attrs_dict = {name: (value if value is not None else "") for name, value in attrs}
        self.tree._append(self._current, tag, attrs_dict)

    def handle_endtag(self, tag):
        # Unmatched end tags are ignored; matched ones close everything above
        for depth in range(len(self._stack) - 1, 0, -1):
            if self.tree.tag(self._stack[depth]) == tag:
                del self._stack[depth:]
                return

    def handle_data(self, data):
        if data:
            self.tree._append(self._current, TEXT_TAG, data=data)


def parse_fragment(markup: str) -> DomTree:
    """Parse a markup fragment under a synthetic root.

    Never raises: a parser failure keeps whatever was built so far.
    """
    tree = DomTree()
    builder = _TreeBuilder(tree)
    try:
        builder.feed(markup or "")
        builder.close()
    except Exception as e:
        logger.debug(f"PARSE_TOLERATED: partial tree after parser error: {e}")
    return tree
