"""
Consensus core - reputation-weighted forecast aggregation and scoring.

Combines probability predictions from many forecasters into one signal per
market, scores predictions against realized outcomes and classifies the
belief dynamics of probability time series.

Modules:
    errors - Error taxonomy
    config - Defaults and YAML overrides
    models - Record dataclasses
    validation - JSON-schema validation of inputs
    scorer - Brier scoring
    store - Store interface and in-memory store
    ledger - Append-only JSONL store
    reputation - Rank-decayed reputation updates
    aggregation - Reputation-weighted market signals
    feed - Market outcome feeds
    resolver - Market resolution sweep and manual resolution
    regime - Velocity, fragility, belief flips and regime stress
    reporter - Leaderboard and forecaster profiles
    cli - Command-line interface entrypoints
"""

from . import errors
from . import config
from . import models
from . import validation
from . import scorer
from . import store
from . import ledger
from . import reputation
from . import aggregation
from . import feed
from . import resolver
from . import regime
from . import reporter

__version__ = "0.1.0"
