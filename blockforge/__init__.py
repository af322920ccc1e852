"""
Blockforge - Content block extraction and visual refinement

Turns a rendered web page fragment into a typed, reusable content block
(HTML/CSS/behavior bundle) and refines it against a reference screenshot.
"""

__version__ = "0.1.0"
__author__ = "Blockforge Team"
