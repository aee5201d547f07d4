"""
goalstake Tree Layer
====================

Modules:
    repository: CRUD, subtree materialization, cascading deletes, lock guard
    ratio: Completion ratio arithmetic and goal/category recompute
"""

from .repository import TreeRepository
from .ratio import RatioEngine, completion_ratio

__all__ = ["TreeRepository", "RatioEngine", "completion_ratio"]
