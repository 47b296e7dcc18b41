"""
Comments Collator: backend for the Comments Collator Figma plugin.
"""

__version__ = "0.1.0"
