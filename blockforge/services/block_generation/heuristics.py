"""Tunable constants for the structural classifier.

All thresholds and weights are fixed; classifier.py reads them from here
only, so the scoring can be audited and tested without parsing anything.
"""

import re

# ---------------------------------------------------------------------------
# Title detection
# ---------------------------------------------------------------------------

TITLE_HEADING_TAGS = ("h1", "h2", "h3")
HIDDEN_CLASS_HINTS = ("offscreen", "sr-only", "hidden", "aria-")
ITEM_HIDDEN_CLASS_HINTS = ("offscreen", "hidden")
TITLE_CLASS_HINTS = ("mainheader", "main-header", "title", "headline")
TITLE_NESTING_RE = re.compile(r"col|card|tab|cell|item", re.IGNORECASE)
TITLE_MAX_NESTING = 5
TITLE_MIN_LENGTH = 5    # exclusive
TITLE_MAX_LENGTH = 100  # exclusive
SUBTITLE_MIN_LENGTH = 10  # exclusive

# ---------------------------------------------------------------------------
# Repeating-group detection
# ---------------------------------------------------------------------------

CANDIDATE_CLASS_PATTERNS = (
    re.compile(r"\bcol[_-]?\d+\b", re.IGNORECASE),        # col1, col-1, col_1
    re.compile(r"\bcolumn[_-]?\d*\b", re.IGNORECASE),     # column, column1
    re.compile(r"\btab[_-]?content\b", re.IGNORECASE),    # tabContent, tab-content
    re.compile(r"\bcard\b", re.IGNORECASE),
    re.compile(r"\bgrid[_-]?\d+\b", re.IGNORECASE),       # grid_8, grid-4
    re.compile(r"\bcell\b", re.IGNORECASE),
    re.compile(r"\bslide\b", re.IGNORECASE),
    re.compile(r"carousel[_-]*item", re.IGNORECASE),      # carousel__item
    re.compile(r"\bswiper-slide\b", re.IGNORECASE),
    re.compile(r"\bslick-slide\b", re.IGNORECASE),
)
MIN_GROUP_SIZE = 2
CONSISTENT_GROUP_MULTIPLIER = 2
STRUCTURAL_FALLBACK_TAGS = ("section", "article", "div")
STRUCTURAL_GROUP_MIN = 2
STRUCTURAL_GROUP_MAX = 6

# ---------------------------------------------------------------------------
# Per-item extraction
# ---------------------------------------------------------------------------

LAZY_IMAGE_ATTRIBUTE = "data-src"
PLACEHOLDER_IMAGE_HINTS = ("clear.gif", "spacer", "1x1")
BACKGROUND_URL_RE = re.compile(
    r"background(?:-image)?:\s*url\(['\"]?([^'\")\s]+)['\"]?\)", re.IGNORECASE
)
MIN_DESCRIPTION_PARAGRAPH_LENGTH = 10  # exclusive
MIN_CTA_TEXT_LENGTH = 2  # exclusive

# ---------------------------------------------------------------------------
# Carousel detection
# ---------------------------------------------------------------------------

CAROUSEL_CLASS_PATTERNS = (
    re.compile(r"\bcarousel\b"),
    re.compile(r"\bslider\b"),
    re.compile(r"\bswiper\b"),
    re.compile(r"\bslick\b"),
    re.compile(r"\bslideshow\b"),
    re.compile(r"\bgallery\b"),
)
CAROUSEL_ATTRIBUTE_VALUES = (
    ("aria-roledescription", "carousel"),
    ("data-cmp-is", "carousel"),
)
CAROUSEL_DATA_ATTRIBUTES = ("data-slick", "data-swiper")
CAROUSEL_NAV_CLASS_HINTS = (
    "owl-carousel",
    "carousel-indicator",
    "carousel-control",
    "slick-dots",
    "swiper-pagination",
    "slide-nav",
    "slider-nav",
)

# ---------------------------------------------------------------------------
# Card vs column scoring
# ---------------------------------------------------------------------------

CARD_CLASS_WEIGHTS = (
    (re.compile(r"\bcard\b"), 3),
    (re.compile(r"\btile\b"), 3),
    (re.compile(r"\bgrid-item\b"), 2),
    (re.compile(r"\bproduct\b"), 1),
    (re.compile(r"\bteaser\b"), 2),
)
COLUMN_CLASS_WEIGHTS = (
    (re.compile(r"\bcol(?:umn)?[-_]?\d*\b"), 2),
    (re.compile(r"\bfeature\b"), 1),
)
INLINE_STYLE_CARD_WEIGHTS = (
    (re.compile(r"box-shadow"), 2),
    (re.compile(r"border-radius"), 1),
    (re.compile(r"border:\s*\d"), 1),
)
SHORT_DESCRIPTION_LENGTH = 80    # avg below -> card
LONG_DESCRIPTION_LENGTH = 150    # avg above -> column
SHORT_DESCRIPTION_CARD_POINTS = 2
LONG_DESCRIPTION_COLUMN_POINTS = 2
WRAPPER_LINK_RATIO = 0.5
WRAPPER_LINK_CARD_POINTS = 3
WRAPPER_LINK_HEADING_TAGS = ("h2", "h3", "h4")
CTA_RATIO = 0.7
CTA_COLUMN_POINTS = 2
