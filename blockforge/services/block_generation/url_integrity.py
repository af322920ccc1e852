"""URL-integrity pass over generated markup.

A generator asked to restyle a block tends to swap real asset URLs for
placeholders. Every src=, href= and url(...) value in refined markup is
checked against the URLs of the same category in the original markup:

- a value that is one of the originals is kept (and that original counts
  as used);
- any other value is replaced by the next unused original of its category;
- once the originals of a category are exhausted, values are left as is.
"""

import logging
import re
from typing import Dict, List, Pattern, Tuple

logger = logging.getLogger(__name__)

URL_PATTERNS: Dict[str, Pattern] = {
    "src": re.compile(r"""(src\s*=\s*)(["'])([^"']+)\2""", re.IGNORECASE),
    "href": re.compile(r"""(href\s*=\s*)(["'])([^"']+)\2""", re.IGNORECASE),
    "url": re.compile(r"""(url\(\s*)(["']?)([^"')\s]+)\2(?=\s*\))""", re.IGNORECASE),
}


def extract_urls(markup: str) -> Dict[str, List[str]]:
    """Collect URL values per category in document order."""
    return {
        category: [match.group(3) for match in pattern.finditer(markup or "")]
        for category, pattern in URL_PATTERNS.items()
    }


def restore_original_urls(refined: str, original: str) -> str:
    """Put the original's URLs back into refined markup.

    Args:
        refined: Markup returned by the generation capability.
        original: Markup the generation started from.

    Returns:
        refined with substituted URLs restored.
    """
    originals = extract_urls(original)
    result = refined
    restored = 0

    for category, pattern in URL_PATTERNS.items():
        if not originals[category]:
            continue
        result, count = _restore_category(pattern, result, originals[category])
        restored += count

    if restored:
        logger.info(f"Restored {restored} URL(s) from the original markup")
    return result


def _restore_category(pattern: Pattern, markup: str, candidates: List[str]) -> Tuple[str, int]:
    # First pass: originals still present claim their slot
    used = [False] * len(candidates)
    for match in pattern.finditer(markup):
        value = match.group(3)
        for index, candidate in enumerate(candidates):
            if candidate == value and not used[index]:
                used[index] = True
                break

    unused = [candidates[index] for index, taken in enumerate(used) if not taken]
    restored = 0

    def substitute(match: "re.Match") -> str:
        nonlocal restored
        prefix, quote, value = match.group(1), match.group(2), match.group(3)
        if value in candidates or restored >= len(unused):
            return match.group(0)
        replacement = unused[restored]
        restored += 1
        logger.debug(f"Restored '{value[:50]}' -> '{replacement[:50]}'")
        return f"{prefix}{quote}{replacement}{quote}"

    return pattern.sub(substitute, markup), restored
