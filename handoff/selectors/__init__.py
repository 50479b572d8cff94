"""
Selectors package
-----------------
Single-snapshot element lookup (exact / substring text matching) and the
bounded polling strategy every step uses to wait for its target.
"""

from .locator import Criterion, MatchMode, locate, matches, normalize, pick
from .strategy import LocatorStrategy

__all__ = [
    "Criterion",
    "MatchMode",
    "locate",
    "matches",
    "normalize",
    "pick",
    "LocatorStrategy",
]
