"""
goalstake Transfer Layer
========================

Modules:
    schema: Pydantic transfer document and IdPolicy
    codec: Export a goal tree to JSON and import it as a new goal
    assistant: LLM-drafted goal trees (OpenAI), materialized through the codec
"""

from .schema import IdPolicy, TransferGoal, TransferStep, TransferTodo
from .codec import ImportResult, TransferCodec

__all__ = [
    "IdPolicy",
    "TransferGoal",
    "TransferStep",
    "TransferTodo",
    "ImportResult",
    "TransferCodec",
]
