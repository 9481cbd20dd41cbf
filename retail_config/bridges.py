"""
Bridges from configuration to kernel state.

Responsibility:
    Translate the counters declared in a RetailConfiguration into rows of
    the counter store, through SequenceService so every admin rule
    (prefix, padding, starting value) is applied.

Invariants enforced:
    - Idempotent: counters that already exist are left untouched.  A
      configuration reload can never move a live counter.
    - Flushes only; the caller commits.
"""

from __future__ import annotations

from retail_config.schema import RetailConfiguration
from retail_kernel.logging_config import get_logger
from retail_kernel.services.sequence_service import SequenceConfig, SequenceService

_logger = get_logger("config.bridges")


def install_sequences(
    service: SequenceService,
    config: RetailConfiguration,
    actor_id: int,
) -> list[SequenceConfig]:
    """
    Create every configured counter that does not exist yet.

    Returns:
        The counters created by this call (empty when all existed).
    """
    existing = {c.type_code for c in service.get_all_sequences()}
    created: list[SequenceConfig] = []
    for seed in config.sequence_seeds:
        if seed.type_code in existing:
            continue
        created.append(
            service.create_sequence(
                seed.type_code,
                actor_id,
                prefix=seed.prefix,
                padding_length=seed.padding_length,
                starting_value=seed.starting_value,
                format_variant=seed.format_variant,
                description=seed.description,
            )
        )
    _logger.info(
        "sequences_installed",
        extra={
            "config_id": config.config_id,
            "created_types": [c.type_code.value for c in created],
            "skipped": len(config.sequence_seeds) - len(created),
        },
    )
    return created
