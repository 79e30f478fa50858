"""
Configuration for the consensus core.

Defaults live here as module constants; config/consensus.yaml may override
them for CLI runs. Core functions take the module constants as their default
arguments so library callers get the documented behaviour without loading
any file.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConsensusError

logger = logging.getLogger(__name__)


# Reputation
DECAY_FACTOR = 0.95
DEFAULT_REPUTATION = 0.5
DEFAULT_AVG_BRIER = 0.5

# Signal points
DEFAULT_LIQUIDITY = 1.0
DEFAULT_BAND = 0.18

# Stress classification
VELOCITY_MULTIPLIER = 4.0
BAND_MULTIPLIER = 1.2
HIGH_STRESS_THRESHOLD = 0.45
MED_STRESS_THRESHOLD = 0.28
MIN_HISTORY_POINTS = 4

# Belief flip
FLIP_MIN_STRENGTH = 0.001

DEFAULT_LEDGER_DIR = "consensus/ledger"
DEFAULT_FEED_TIMEOUT_SECONDS = 30
DEFAULT_FEED_MAX_RETRIES = 1

CONFIG_FILENAME = "config/consensus.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "reputation": {
        "decay_factor": DECAY_FACTOR,
        "default": DEFAULT_REPUTATION,
    },
    "signal_point": {
        "default_liquidity": DEFAULT_LIQUIDITY,
        "default_band": DEFAULT_BAND,
    },
    "stress": {
        "velocity_multiplier": VELOCITY_MULTIPLIER,
        "band_multiplier": BAND_MULTIPLIER,
        "high_threshold": HIGH_STRESS_THRESHOLD,
        "med_threshold": MED_STRESS_THRESHOLD,
    },
    "belief_flip": {
        "min_strength": FLIP_MIN_STRENGTH,
    },
    "ledger": {
        "dir": DEFAULT_LEDGER_DIR,
    },
    "feed": {
        "timeout_seconds": DEFAULT_FEED_TIMEOUT_SECONDS,
        "max_retries": DEFAULT_FEED_MAX_RETRIES,
    },
}

# Keys whose values must be numeric
_NUMERIC_KEYS = {
    ("reputation", "decay_factor"),
    ("reputation", "default"),
    ("signal_point", "default_liquidity"),
    ("signal_point", "default_band"),
    ("stress", "velocity_multiplier"),
    ("stress", "band_multiplier"),
    ("stress", "high_threshold"),
    ("stress", "med_threshold"),
    ("belief_flip", "min_strength"),
    ("feed", "timeout_seconds"),
    ("feed", "max_retries"),
}


class ConfigError(ConsensusError):
    """Raised when a configuration value has the wrong type."""
    pass


def _candidate_paths() -> List[str]:
    return [
        CONFIG_FILENAME,
        os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), CONFIG_FILENAME),
    ]


def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load consensus config from {path}: {e}")
        return {}

    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring consensus config at {path}: top level is not a mapping")
        return {}
    return loaded


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration, overlaying config/consensus.yaml on the defaults.

    Args:
        path: Explicit config file. When omitted, config/consensus.yaml is
            looked up in the working directory and then the repo root.

    Returns:
        Config dict with every section of DEFAULT_CONFIG present

    Raises:
        ConfigError: If a numeric setting holds a non-numeric value
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        paths = [str(path)]
    else:
        paths = _candidate_paths()

    loaded: Dict[str, Any] = {}
    for candidate in paths:
        if os.path.exists(candidate):
            loaded = _read_yaml(candidate)
            break

    for section, values in loaded.items():
        if section not in config or not isinstance(values, dict):
            continue
        for key, value in values.items():
            if key not in config[section]:
                continue
            if (section, key) in _NUMERIC_KEYS:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
            config[section][key] = value

    return config


def get_ledger_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Ledger directory from config (defaults to consensus/ledger)."""
    config = config or load_config()
    return Path(config["ledger"]["dir"])
