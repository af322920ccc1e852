"""Prompt builder for visual refinement.

Bump REFINEMENT_PROMPT_VERSION whenever the prompt text changes.
"""

from typing import Optional

from .models import RenderableBlock

REFINEMENT_PROMPT_VERSION = "v1"

REFERENCE_IMAGE_LABEL = "Original design (target)"
RENDERED_IMAGE_LABEL = "Generated block (current)"

_FOCUS_AREAS = """- Colors (backgrounds, text, borders)
- Spacing (padding, margins, gaps)
- Typography (font sizes, weights, line heights)
- Layout (flexbox/grid properties, alignment)
- Dimensions (widths, heights)"""


def build_refinement_prompt(
    block: RenderableBlock,
    instruction: Optional[str] = None,
    style_profile_text: Optional[str] = None,
) -> str:
    """Refinement prompt for a block shown next to its reference image.

    Args:
        block: Current bundle being refined.
        instruction: Optional free-form guidance from the user.
        style_profile_text: Output of format_profile_for_prompt().
    """
    if instruction:
        focus = f"IMPORTANT USER INSTRUCTIONS:\n{instruction}\n\nAlso consider:\n{_FOCUS_AREAS}"
    else:
        focus = f"Focus on:\n{_FOCUS_AREAS}"

    styles_section = ""
    if style_profile_text:
        styles_section = f"\n{style_profile_text.strip()}\n"

    return f"""You are an expert CSS developer. I'm showing you two images:
1. The ORIGINAL design (target) - this is what we want to match
2. The GENERATED block (current attempt) - this is what we've created so far

Compare these two images visually and identify the differences.

The block's root element is `{block.root_selector}`. Its behavior exports `decorate(block)`, which is called once with that root element.

The current block code is:

HTML:
```html
{block.markup}
```

CSS:
```css
{block.stylesheet}
```

JavaScript:
```javascript
{block.behavior}
```
{styles_section}
Analyze the visual differences and provide REFINED code that will make the generated block look MORE like the original.

## CRITICAL RULES - DO NOT VIOLATE

1. **NEVER change any URLs** - Keep ALL src="...", href="..." and url(...) values EXACTLY as they are
2. **Only modify CSS and HTML structure** - Fix styling, not content
3. **Keep the root class** - The outer element must keep the class `{block.name}`
4. **Interactive elements** - Navigation (arrows, dots, tabs) must use click handlers, not just visual elements
5. **Image sizing** - Match the size images appear at in the original; do not force object-fit: cover unless the design clearly crops images

{focus}

Return ONLY a JSON object with the refined code:
{{
  "html": "refined HTML with EXACT SAME URLs",
  "css": "refined CSS here",
  "js": "refined JavaScript here",
  "notes": "brief description of what was changed"
}}

Make targeted changes to fix the visual differences you observe. DO NOT CHANGE ANY URLs."""
