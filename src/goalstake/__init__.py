"""
goalstake - Goal Trees with Staked Commitments
==============================================

Users build hierarchical goal plans (Category > Goal > Step > sub-Step > Todo),
track completion ratios, and may stake money on a goal. Once the stake is
captured the goal's structure is frozen, and each completion milestone
(25/50/75/100%) releases a quarter of the stake back.

Main Packages:
    - core: Configuration, exceptions, logging, records, storage paths, DI container
    - storage: Hierarchical document store contract plus memory and Redis backends
    - tree: Tree repository and the ratio engine
    - settlement: Payment gateway contract, Stripe gateway, settlement engine
    - transfer: JSON export/import codec and the LLM tree assistant
    - api: FastAPI REST endpoints and payment webhook

Quick Start:
    from goalstake.core.container import build_container
    from goalstake.core.config import GoalstakeConfig

    container = build_container(GoalstakeConfig())
    goal = await container.repository.add_goal("u1", "c1", "Run a marathon")

Version: 1.0.0
"""

__version__ = "1.0.0"
