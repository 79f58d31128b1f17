"""
ReviewIQ backend.

Spaced-repetition review scheduling with adaptive problem difficulty.
"""

__version__ = "0.1.0"
