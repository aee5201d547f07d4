"""
goalstake Configuration System
==============================
Centralized, validated configuration with environment variable overrides.

Priority: ENV (GOALSTAKE_<KEY>) > config.yaml (under the ``goalstake`` key) > defaults.
"""

import os
from pathlib import Path
from typing import Optional, Tuple
from dataclasses import dataclass, field

import yaml

from goalstake.core.exceptions import ConfigurationError

MILESTONES: Tuple[int, ...] = (25, 50, 75, 100)

STORE_BACKENDS = ("memory", "redis")
ID_POLICIES = ("regenerate", "preserve")


@dataclass(frozen=True)
class StoreConfig:
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "goalstake"
    max_connections: int = 10
    socket_timeout: int = 5
    password: Optional[str] = None


@dataclass(frozen=True)
class TreeConfig:
    # None = unbounded, matching the plain recursive fan-out
    max_concurrency: Optional[int] = None
    max_depth: Optional[int] = None


@dataclass(frozen=True)
class SettlementConfig:
    milestones: Tuple[int, ...] = MILESTONES
    currency: str = "jpy"
    return_origin: str = "http://localhost:3000"
    auto_settle: bool = True


@dataclass(frozen=True)
class StripeConfig:
    api_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_base: str = "https://api.stripe.com"
    timeout_seconds: float = 30.0
    signature_tolerance_seconds: int = 300


@dataclass(frozen=True)
class AssistantConfig:
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7


@dataclass(frozen=True)
class TransferConfig:
    id_policy: str = "regenerate"


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    json_logs: bool = False


@dataclass(frozen=True)
class GoalstakeConfig:
    """Root configuration object."""
    version: str = "1.0"
    store: StoreConfig = field(default_factory=StoreConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    stripe: StripeConfig = field(default_factory=StripeConfig)
    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _env_override(key: str, default):
    """Check for GOALSTAKE_<KEY> environment variable override."""
    env_key = f"GOALSTAKE_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    if isinstance(default, bool):
        return val.lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(val)
    if isinstance(default, float):
        return float(val)
    return val


def _parse_optional_positive_int(value: Optional[object]) -> Optional[int]:
    """Parse positive int values. Non-positive/invalid values become None."""
    if value is None:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def load_config(path: Optional[Path] = None) -> GoalstakeConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml and the repo root.

    Returns:
        Validated GoalstakeConfig instance.

    Raises:
        ConfigurationError: On an unknown store backend or id policy.
    """
    if path is None:
        candidates = [
            Path("config.yaml"),
            Path(__file__).parent.parent.parent.parent / "config.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
            raw = loaded.get("goalstake") or {}

    # Build store config
    store_raw = raw.get("store") or {}
    store = StoreConfig(
        backend=_env_override("STORE_BACKEND", store_raw.get("backend", "memory")),
        redis_url=_env_override("REDIS_URL", store_raw.get("redis_url", "redis://localhost:6379/0")),
        redis_prefix=store_raw.get("redis_prefix", "goalstake"),
        max_connections=store_raw.get("max_connections", 10),
        socket_timeout=store_raw.get("socket_timeout", 5),
        password=_env_override("REDIS_PASSWORD", store_raw.get("password")),
    )
    if store.backend not in STORE_BACKENDS:
        raise ConfigurationError(
            config_key="store.backend",
            reason=f"Unknown backend '{store.backend}', expected one of {', '.join(STORE_BACKENDS)}",
        )

    # Build tree config
    tree_raw = raw.get("tree") or {}
    tree = TreeConfig(
        max_concurrency=_parse_optional_positive_int(
            os.environ.get("GOALSTAKE_TREE_MAX_CONCURRENCY", tree_raw.get("max_concurrency"))
        ),
        max_depth=_parse_optional_positive_int(
            os.environ.get("GOALSTAKE_TREE_MAX_DEPTH", tree_raw.get("max_depth"))
        ),
    )

    # Build settlement config
    settle_raw = raw.get("settlement") or {}
    settlement = SettlementConfig(
        currency=settle_raw.get("currency", "jpy"),
        return_origin=_env_override("RETURN_ORIGIN", settle_raw.get("return_origin", "http://localhost:3000")),
        auto_settle=_env_override("AUTO_SETTLE", settle_raw.get("auto_settle", True)),
    )

    # Build stripe config
    stripe_raw = raw.get("stripe") or {}
    stripe = StripeConfig(
        api_key=_env_override("STRIPE_API_KEY", stripe_raw.get("api_key")),
        webhook_secret=_env_override("STRIPE_WEBHOOK_SECRET", stripe_raw.get("webhook_secret")),
        api_base=stripe_raw.get("api_base", "https://api.stripe.com"),
        timeout_seconds=float(stripe_raw.get("timeout_seconds", 30.0)),
        signature_tolerance_seconds=stripe_raw.get("signature_tolerance_seconds", 300),
    )

    # Build assistant config
    assistant_raw = raw.get("assistant") or {}
    assistant = AssistantConfig(
        model=_env_override("ASSISTANT_MODEL", assistant_raw.get("model", "gpt-4o-mini")),
        api_key=_env_override("ASSISTANT_API_KEY", assistant_raw.get("api_key")),
        base_url=assistant_raw.get("base_url"),
        temperature=float(assistant_raw.get("temperature", 0.7)),
    )

    # Build transfer config
    transfer_raw = raw.get("transfer") or {}
    transfer = TransferConfig(
        id_policy=_env_override("IMPORT_ID_POLICY", transfer_raw.get("id_policy", "regenerate")).lower(),
    )
    if transfer.id_policy not in ID_POLICIES:
        raise ConfigurationError(
            config_key="transfer.id_policy",
            reason=f"Unknown id policy '{transfer.id_policy}', expected one of {', '.join(ID_POLICIES)}",
        )

    # Build observability config
    obs_raw = raw.get("observability") or {}
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        json_logs=_env_override("JSON_LOGS", obs_raw.get("json_logs", False)),
    )

    return GoalstakeConfig(
        version=str(raw.get("version", "1.0")),
        store=store,
        tree=tree,
        settlement=settlement,
        stripe=stripe,
        assistant=assistant,
        transfer=transfer,
        observability=observability,
    )


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[GoalstakeConfig] = None


def get_config() -> GoalstakeConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None
