"""
CLI for Blockforge
"""
