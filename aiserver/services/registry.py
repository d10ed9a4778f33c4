"""
Per-dependency circuit breaker profiles and the process-wide registry.

Thresholds are tuned per dependency: slow generation APIs tolerate more
failures and wait longer before probing than the database or file downloads.

The process-wide registry must be created explicitly with init_registry()
during application bootstrap. Tests should build their own registry with
build_default_registry() instead of touching the global one.
"""

from datetime import timedelta
from typing import Any

from loguru import logger

from aiserver.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    StateChangeCallback,
)

REPLICATE = "replicate"
SUPABASE = "supabase"
ELEVENLABS = "elevenlabs"
SYNCLABS = "synclabs"
HUGGINGFACE = "huggingface"
BFL = "bfl"
FILE_DOWNLOAD = "file-download"

BREAKER_CONFIGS: dict[str, CircuitBreakerConfig] = {
    REPLICATE: CircuitBreakerConfig(
        failure_threshold=5,
        recovery_timeout=timedelta(seconds=30),
        success_threshold=3,
        monitoring_period=timedelta(seconds=60),
    ),
    SUPABASE: CircuitBreakerConfig(
        failure_threshold=3,
        recovery_timeout=timedelta(seconds=10),
        success_threshold=2,
        monitoring_period=timedelta(seconds=30),
    ),
    ELEVENLABS: CircuitBreakerConfig(
        failure_threshold=4,
        recovery_timeout=timedelta(seconds=20),
        success_threshold=2,
        monitoring_period=timedelta(seconds=45),
    ),
    SYNCLABS: CircuitBreakerConfig(
        failure_threshold=4,
        recovery_timeout=timedelta(seconds=25),
        success_threshold=2,
        monitoring_period=timedelta(seconds=50),
    ),
    # HuggingFace spaces are slow to wake up
    HUGGINGFACE: CircuitBreakerConfig(
        failure_threshold=6,
        recovery_timeout=timedelta(seconds=45),
        success_threshold=3,
        monitoring_period=timedelta(seconds=90),
    ),
    BFL: CircuitBreakerConfig(
        failure_threshold=5,
        recovery_timeout=timedelta(seconds=30),
        success_threshold=2,
        monitoring_period=timedelta(seconds=60),
    ),
    FILE_DOWNLOAD: CircuitBreakerConfig(
        failure_threshold=3,
        recovery_timeout=timedelta(seconds=5),
        success_threshold=2,
        monitoring_period=timedelta(seconds=15),
    ),
}


def build_default_registry(
    on_state_change: StateChangeCallback | None = None,
) -> CircuitBreakerRegistry:
    """Create a fresh registry holding one breaker per known dependency."""
    registry = CircuitBreakerRegistry(on_state_change=on_state_change)
    for name, config in BREAKER_CONFIGS.items():
        registry.register(CircuitBreaker(name, config, on_state_change=on_state_change))
    return registry


# Global registry instance
_global_registry: CircuitBreakerRegistry | None = None


def init_registry(
    registry: CircuitBreakerRegistry | None = None,
) -> CircuitBreakerRegistry:
    """Install the process-wide registry (a default one if none is given)."""
    global _global_registry
    _global_registry = registry or build_default_registry()
    logger.info(f"Circuit breaker registry initialized: {_global_registry.names()}")
    return _global_registry


def get_registry() -> CircuitBreakerRegistry:
    """Get the process-wide registry. init_registry() must have been called."""
    if _global_registry is None:
        raise RuntimeError("Circuit breaker registry is not initialized")
    return _global_registry


def clear_registry() -> None:
    """Drop the process-wide registry."""
    global _global_registry
    _global_registry = None


def get_all_circuit_breaker_stats() -> dict[str, CircuitBreakerStats]:
    return get_registry().get_all_stats()


def get_all_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    return get_registry().get_all_status()


def reset_all_circuit_breakers() -> None:
    get_registry().reset_all()
    logger.info("All circuit breakers reset")
