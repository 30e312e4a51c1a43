"""
Test utilities for Tidemark.
"""

from .async_helpers import wait_for_condition, assert_completes_within

__all__ = [
    "wait_for_condition",
    "assert_completes_within",
]
