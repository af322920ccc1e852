"""
Services layer for Blockforge.
"""
