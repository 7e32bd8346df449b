"""
Consolidation target configuration.

Targets come from the built-in CONSOLIDATION_TARGETS registry and, optionally,
a JSON file of the same shape:

    {
      "promo_codes": {
        "table": "PromoCode",
        "natural_key": ["whopId", "code"],
        "created_column": "createdAt",
        "referrers": [{"table": "OfferTracking", "column": "promoCodeId"}]
      }
    }

File entries override registry entries with the same name.
"""

import json
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from consolidator.config import CONSOLIDATION_TARGETS, settings
from consolidator.deduplication.exceptions import ConfigurationError
from consolidator.deduplication.types import EntitySpec, ReferrerSpec

REQUIRED_KEYS = {"table", "natural_key"}
OPTIONAL_KEYS = {
    "referrers",
    "id_column",
    "created_column",
    "casefold_columns",
    "null_keys",
    "index_name",
    "schema",
    "description",
}


def build_spec(name: str, config: dict[str, Any]) -> EntitySpec:
    """Build and validate an EntitySpec from a registry/JSON entry."""
    if not isinstance(config, dict):
        raise ConfigurationError(f"Target {name!r} must be an object", target=name)

    missing = REQUIRED_KEYS - config.keys()
    if missing:
        raise ConfigurationError(f"Target {name!r} is missing {sorted(missing)}", target=name)

    unknown = config.keys() - REQUIRED_KEYS - OPTIONAL_KEYS
    if unknown:
        raise ConfigurationError(f"Target {name!r} has unknown keys {sorted(unknown)}", target=name)

    natural_key = config["natural_key"]
    if isinstance(natural_key, str):
        natural_key = [natural_key]

    referrers = []
    for entry in config.get("referrers", []):
        try:
            referrers.append(
                ReferrerSpec(table=entry["table"], column=entry["column"], schema=entry.get("schema"))
            )
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(
                f"Target {name!r} has a malformed referrer: {entry!r}", target=name
            ) from exc

    if not referrers:
        logger.warning(f"Target {name!r} registers no referrers; losers will be deleted outright")

    spec = EntitySpec(
        name=name,
        table=config["table"],
        natural_key=tuple(natural_key),
        referrers=tuple(referrers),
        id_column=config.get("id_column", "id"),
        created_column=config.get("created_column", "created_at"),
        casefold_columns=tuple(config.get("casefold_columns", ())),
        null_keys=config.get("null_keys", "ignore"),
        index_name=config.get("index_name"),
        schema=config.get("schema"),
        description=config.get("description", ""),
    )
    spec.validate()
    return spec


def load_targets(path: Optional[Path] = None) -> dict[str, EntitySpec]:
    """
    Load all configured targets.

    Args:
        path: Optional JSON file; defaults to CONSOLIDATION_TARGETS_FILE

    Raises:
        ConfigurationError: If the file is unreadable or any target is invalid
    """
    raw: dict[str, Any] = dict(CONSOLIDATION_TARGETS)

    path = path or settings.consolidation.targets_file
    if path:
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                extra = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read targets file {path}: {exc}") from exc
        if not isinstance(extra, dict):
            raise ConfigurationError(f"Targets file {path} must contain a JSON object")
        logger.debug(f"Loaded {len(extra)} target(s) from {path}")
        raw.update(extra)

    return {name: build_spec(name, config) for name, config in raw.items()}


def get_target(name: str, path: Optional[Path] = None) -> EntitySpec:
    """Look up one target by name."""
    targets = load_targets(path)
    if name not in targets:
        raise ConfigurationError(
            f"Unknown target {name!r}. Available: {', '.join(sorted(targets))}", target=name
        )
    return targets[name]
