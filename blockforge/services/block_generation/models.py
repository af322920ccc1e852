"""Data model for block extraction, rendering and refinement."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BlockKind(str, Enum):
    """Content shape recovered by the classifier."""
    COLUMNS = "columns"
    CARDS = "cards"
    TABS = "tabs"
    ACCORDION = "accordion"
    HERO = "hero"
    TEXT = "text"
    CAROUSEL = "carousel"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ImageRef:
    src: str
    alt: str = ""


@dataclass(frozen=True)
class LinkRef:
    text: str
    href: str


@dataclass(frozen=True)
class ContentItem:
    """One repeating unit (card, column, slide) in source document order."""
    image: Optional[ImageRef] = None
    heading: Optional[str] = None
    heading_level: Optional[int] = None
    description: Optional[str] = None
    cta: Optional[LinkRef] = None


@dataclass(frozen=True)
class StyleHints:
    """Presentation hints recovered from inline styles."""
    column_count: int = 1
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    heading_color: Optional[str] = None
    link_color: Optional[str] = None
    gap: Optional[str] = None
    padding: Optional[str] = None
    heading_font: Optional[str] = None
    body_font: Optional[str] = None
    border_radius: Optional[str] = None
    box_shadow: Optional[str] = None


@dataclass(frozen=True)
class ContentBlock:
    """Typed content model produced once per classify() call."""
    kind: BlockKind
    items: Tuple[ContentItem, ...] = ()
    style_hints: StyleHints = field(default_factory=StyleHints)
    title: Optional[str] = None
    subtitle: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["items"] = [asdict(item) for item in self.items]
        return data


STYLE_ROLES = ("container", "card", "heading", "image", "text", "link")


@dataclass
class StyleProfile:
    """Computed styles sampled per role.

    Each role maps to a list of property->value dicts, one per sampled
    element (at most a handful per role).
    """
    roles: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {role: [] for role in STYLE_ROLES}
    )

    def primary(self, role: str) -> Dict[str, str]:
        samples = self.roles.get(role) or []
        return samples[0] if samples else {}

    def is_empty(self) -> bool:
        return not any(self.roles.values())


@dataclass(frozen=True)
class RenderableBlock:
    """Self-contained, directly renderable HTML/CSS/behavior bundle."""
    name: str
    markup: str
    stylesheet: str = ""
    behavior: str = ""

    @property
    def root_selector(self) -> str:
        return f".{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class Viewport:
    width: int = 1440
    height: int = 900


@dataclass
class DiffResult:
    """Pixel-level divergence between two snapshots.

    width/height are the overlapping region (min of both inputs).
    """
    score: float
    total_pixels: int
    diff_pixels: int
    diff_image: str  # base64 PNG
    width: int
    height: int

    def to_dict(self, include_image: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_image:
            data.pop("diff_image")
        return data


@dataclass(frozen=True)
class EncodedImage:
    """Base64 image payload plus its media type."""
    data: str
    media_type: str = "image/png"


@dataclass(frozen=True)
class GenerationImages:
    """Images handed to the generation capability."""
    reference: EncodedImage
    rendered: EncodedImage


class RefinementPhase(str, Enum):
    IDLE = "idle"
    RENDERING = "rendering"
    COMPARING = "comparing"
    REFINING = "refining"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class RefinementState:
    """Per-chain bookkeeping, discarded once the caller has its result."""
    best_block: RenderableBlock
    max_iterations: int
    phase: RefinementPhase = RefinementPhase.IDLE
    iteration: int = 0
    best_diff: Optional[DiffResult] = None
    history: List[DiffResult] = field(default_factory=list)
    best_image: str = ""
    error: Optional[str] = None

    def record(self, block: RenderableBlock, diff: DiffResult, rendered_image: str = "") -> None:
        """Append a measurement and keep the lowest-score block as best."""
        self.history.append(diff)
        if self.best_diff is None or diff.score < self.best_diff.score:
            self.best_block = block
            self.best_diff = diff
            self.best_image = rendered_image


@dataclass
class RefinementResult:
    block: RenderableBlock
    diff: DiffResult
    refinement_applied: bool
    notes: str
    rendered_image: str = ""
    previous_diff: Optional[DiffResult] = None
