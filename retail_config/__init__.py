"""
retail_config -- single public entrypoint for store configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``RetailConfiguration``
    whose policies are handed to the kernel services by constructor
    injection.

Architecture position:
    Configuration -- sits above ``retail_kernel`` and ``retail_engines``.
    The kernel MUST NEVER import from ``retail_config``; it only ever sees
    the policy dataclasses.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` / ``KeyError`` -- invalid or incomplete configuration.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``RETAIL_CONFIG_TRACE`` log entry with the config_id, version and
    checksum.  That trace ties every sale and reconciliation back to the
    thresholds that governed it.
"""

from __future__ import annotations

from pathlib import Path

from retail_config.bridges import install_sequences
from retail_config.loader import load_yaml_file, parse_configuration
from retail_config.schema import RetailConfiguration, SequenceSeedDef
from retail_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_name: str = "default",
    config_dir: Path | None = None,
) -> RetailConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_name: Name of the set, i.e. ``<config_dir>/<config_name>.yaml``.
        config_dir: Override path to configuration sets directory.
            Defaults to retail_config/sets/.

    Raises:
        FileNotFoundError: If no such configuration set exists.
        ValueError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{config_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = parse_configuration(load_yaml_file(path))

    _logger.info(
        "RETAIL_CONFIG_TRACE",
        extra={
            "trace_type": "RETAIL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "tax_rate": str(config.tax.rate),
            "sequence_count": len(config.sequence_seeds),
        },
    )
    return config


__all__ = [
    "RetailConfiguration",
    "SequenceSeedDef",
    "get_active_config",
    "install_sequences",
]
