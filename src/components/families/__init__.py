"""
Families component - base+variant grouping of asset records.
"""

from .component import find_orphans, group_families

__all__ = [
    "find_orphans",
    "group_families",
]
