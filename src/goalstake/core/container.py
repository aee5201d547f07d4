"""
Dependency Injection Container
==============================
Builds and wires all application dependencies: store, repository, ratio
engine, settlement engine, transfer codec and tree assistant.

Wiring of the recompute chain:
    repository structure change -> RatioEngine.recompute_category
    RatioEngine goal recompute  -> SettlementEngine.on_goal_ratio_changed
"""

from dataclasses import dataclass
from typing import Optional

from goalstake.core.config import GoalstakeConfig
from goalstake.settlement.engine import SettlementEngine
from goalstake.settlement.gateway import PaymentGateway
from goalstake.settlement.stripe_gateway import StripeGateway
from goalstake.storage.base import DocumentStore
from goalstake.storage.memory_store import InMemoryDocumentStore
from goalstake.storage.redis_store import RedisDocumentStore
from goalstake.transfer.assistant import TreeAssistant
from goalstake.transfer.codec import TransferCodec
from goalstake.transfer.schema import IdPolicy
from goalstake.tree.ratio import RatioEngine
from goalstake.tree.repository import TreeRepository


@dataclass
class Container:
    """
    Container holding all wired application dependencies.
    """
    config: GoalstakeConfig
    store: DocumentStore
    repository: TreeRepository
    ratio_engine: RatioEngine
    gateway: PaymentGateway
    settlement: SettlementEngine
    codec: TransferCodec
    assistant: TreeAssistant

    async def close(self) -> None:
        await self.gateway.close()
        await self.store.close()


def build_store(config: GoalstakeConfig) -> DocumentStore:
    if config.store.backend == "redis":
        return RedisDocumentStore(config.store)
    return InMemoryDocumentStore()


def build_container(
    config: GoalstakeConfig,
    store: Optional[DocumentStore] = None,
    gateway: Optional[PaymentGateway] = None,
    assistant: Optional[TreeAssistant] = None,
) -> Container:
    """
    Build and wire all application dependencies.

    Args:
        config: Validated GoalstakeConfig instance.
        store: Override the configured store backend.
        gateway: Override the Stripe gateway.
        assistant: Override the OpenAI-backed tree assistant.

    Returns:
        Container with all dependencies initialized.
    """
    store = store or build_store(config)
    repository = TreeRepository(store, config.tree)
    ratio_engine = RatioEngine(repository)
    gateway = gateway or StripeGateway(config.stripe)
    settlement = SettlementEngine(repository, gateway, config.settlement)

    repository.add_structure_listener(ratio_engine.recompute_category)
    ratio_engine.add_goal_listener(settlement.on_goal_ratio_changed)

    codec = TransferCodec(repository, ratio_engine, IdPolicy(config.transfer.id_policy))

    return Container(
        config=config,
        store=store,
        repository=repository,
        ratio_engine=ratio_engine,
        gateway=gateway,
        settlement=settlement,
        codec=codec,
        assistant=assistant or TreeAssistant(config.assistant),
    )


def build_test_container(
    config: Optional[GoalstakeConfig] = None,
    gateway: Optional[PaymentGateway] = None,
) -> Container:
    """
    Build a container for testing: in-memory store, no network clients.

    Args:
        config: Optional test config. If None, uses defaults.
        gateway: Fake gateway; defaults to an unconfigured StripeGateway
            whose calls raise ConfigurationError.
    """
    return build_container(config or GoalstakeConfig(), store=InMemoryDocumentStore(), gateway=gateway)
