"""
Market feeds reporting real-world outcomes.

A feed answers one question for the resolution sweep: which of these markets
have a known binary outcome right now? Entries are dicts with market_id,
outcome (0 or 1), title, platform and, when the source provides it,
resolved_at_utc.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_FEED_MAX_RETRIES, DEFAULT_FEED_TIMEOUT_SECONDS
from .errors import ConsensusError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = (10, DEFAULT_FEED_TIMEOUT_SECONDS)

_session = requests.Session()


def configure_retries(max_retries: int = DEFAULT_FEED_MAX_RETRIES) -> None:
    """Mount session-level retry for network transients."""
    retry = Retry(
        total=max_retries,
        allowed_methods=["GET"],
        backoff_factor=1,
        status_forcelist=[502, 503, 504],
    )
    _session.mount("https://", HTTPAdapter(max_retries=retry))
    _session.mount("http://", HTTPAdapter(max_retries=retry))


configure_retries()


class FeedError(ConsensusError):
    """Raised when a market feed cannot be read."""
    pass


def normalize_market_entry(raw: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Convert a raw market status entry to a known-outcome entry.

    Accepts ``market_id`` or ``id``. Entries that are not resolved, or whose
    outcome is not exactly 0 or 1, yield None.

    Args:
        raw: Market status dict

    Returns:
        Normalized entry, or None if the outcome is not known
    """
    market_id = raw.get("market_id", raw.get("id"))
    if not market_id:
        return None

    status = raw.get("status", "resolved")
    if status != "resolved":
        return None

    outcome = raw.get("outcome")
    if isinstance(outcome, bool) or outcome not in (0, 1):
        return None

    return {
        "market_id": str(market_id),
        "outcome": int(outcome),
        "title": raw.get("title", ""),
        "platform": raw.get("platform", ""),
        "resolved_at_utc": raw.get("resolved_at_utc", raw.get("resolved_at")),
    }


def _filter_known(entries: Iterable[Mapping[str, Any]], market_ids: Iterable[str]) -> List[Dict[str, Any]]:
    wanted = set(market_ids)
    known = []
    for raw in entries:
        entry = normalize_market_entry(raw)
        if entry is not None and entry["market_id"] in wanted:
            known.append(entry)
    return known


class MarketFeed(ABC):
    """Source of market outcomes."""

    @abstractmethod
    def get_markets_with_known_outcome(self, market_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Markets among market_ids whose outcome is currently determinable.

        Args:
            market_ids: Markets to check

        Returns:
            List of normalized entries (see normalize_market_entry)
        """
        pass


class StaticMarketFeed(MarketFeed):
    """Feed over a fixed list of market status dicts."""

    def __init__(self, markets: Iterable[Mapping[str, Any]]):
        self.markets = list(markets)

    def get_markets_with_known_outcome(self, market_ids: List[str]) -> List[Dict[str, Any]]:
        return _filter_known(self.markets, market_ids)


class JsonFileMarketFeed(MarketFeed):
    """Feed reading a JSON snapshot: a list of markets or {"markets": [...]}."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def get_markets_with_known_outcome(self, market_ids: List[str]) -> List[Dict[str, Any]]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            raise FeedError(f"Failed to read market snapshot {self.path}: {e}") from e

        markets = data.get("markets", []) if isinstance(data, dict) else data
        if not isinstance(markets, list):
            raise FeedError(f"Market snapshot {self.path} has no market list")
        return _filter_known(markets, market_ids)


class HTTPMarketFeed(MarketFeed):
    """Feed backed by a JSON market-status endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: Any = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def get_markets_with_known_outcome(self, market_ids: List[str]) -> List[Dict[str, Any]]:
        if not market_ids:
            return []

        url = f"{self.base_url}/markets"
        params = {"ids": ",".join(market_ids)}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = _session.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise FeedError(f"Market feed request failed: {e}") from e
        except ValueError as e:
            raise FeedError(f"Market feed returned invalid JSON: {e}") from e

        markets = data.get("markets", data.get("data", [])) if isinstance(data, dict) else data
        known = _filter_known(markets or [], market_ids)
        logger.info(f"Market feed: {len(known)}/{len(market_ids)} market(s) with known outcome")
        return known
