"""
Append-only JSONL ledger store.

Scores and resolved markets are pure appends. Predictions and forecasters
change over time, so every change appends a new version of the row and
reads replay the file keeping the latest version per id.

All read-modify-append sequences run under an exclusive fcntl lock on a
lock file in the ledger directory, which makes the resolved-market
check-and-insert atomic across processes sharing the directory.
"""

import fcntl
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .config import DEFAULT_LEDGER_DIR
from .errors import ConsensusError
from .models import Forecaster, Prediction, ResolvedMarket, Score
from .store import Store

logger = logging.getLogger(__name__)


LEDGER_DIR = Path(DEFAULT_LEDGER_DIR)
PREDICTIONS_FILE = "predictions.jsonl"
FORECASTERS_FILE = "forecasters.jsonl"
SCORES_FILE = "scores.jsonl"
RESOLVED_MARKETS_FILE = "resolved_markets.jsonl"
LOCK_FILE = ".ledger.lock"


class LedgerError(ConsensusError):
    """Raised when ledger operations fail."""
    pass


def ensure_ledger_dir(ledger_dir: Path = LEDGER_DIR) -> None:
    """Create ledger directory if it doesn't exist."""
    ledger_dir.mkdir(parents=True, exist_ok=True)


def _encode(record: Dict[str, Any], record_type: Optional[str]) -> str:
    if record_type is not None:
        record = dict(record, record_type=record_type)
    return json.dumps(record, ensure_ascii=False, sort_keys=True) + "\n"


def _drop_torn_tail(f) -> None:
    """Truncate a final line left without its newline by an interrupted append."""
    end = f.seek(0, os.SEEK_END)
    if end == 0:
        return
    f.seek(end - 1)
    if f.read(1) == b"\n":
        return

    cut = 0
    pos = end
    while pos > 0:
        start = max(0, pos - 4096)
        f.seek(start)
        idx = f.read(pos - start).rfind(b"\n")
        if idx != -1:
            cut = start + idx + 1
            break
        pos = start

    logger.warning(f"Dropping {end - cut} byte(s) of incomplete record from {Path(f.name).name}")
    f.truncate(cut)


def append_records(
    file_path: Path,
    records: Iterable[Dict[str, Any]],
    record_type: Optional[str] = None
) -> int:
    """
    Append a batch of records to a JSONL file with one locked, fsynced write.

    Every record is serialized before the file is opened, so an
    unserializable record leaves the file untouched. An incomplete last line
    left by an interrupted append is dropped before writing.

    Args:
        file_path: Path to JSONL file
        records: Record dictionaries to append
        record_type: Tag stored on each row as ``record_type``

    Returns:
        Number of records written

    Raises:
        LedgerError: If serialization or the write fails
    """
    try:
        lines = [_encode(record, record_type) for record in records]
    except (TypeError, ValueError) as e:
        raise LedgerError(f"Failed to serialize record: {e}")

    if not lines:
        return 0

    ensure_ledger_dir(file_path.parent)
    try:
        with open(file_path, 'ab+') as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                _drop_torn_tail(f)
                f.write("".join(lines).encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (IOError, OSError) as e:
        raise LedgerError(f"Failed to append to {file_path.name}: {e}")

    return len(lines)


def append_record(file_path: Path, record: Dict[str, Any], record_type: Optional[str] = None) -> None:
    """Append one record; see append_records."""
    append_records(file_path, [record], record_type)


def read_records(
    file_path: Path,
    filter_fn: Optional[Callable[[Dict[str, Any]], bool]] = None,
    record_type: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read records from a JSONL file in append order.

    Rows tagged with a different ``record_type`` are skipped; untagged rows
    always match. A final line without a newline that fails to parse is an
    append cut short by a crash and is skipped with a warning. Any other
    bad line is corruption.

    Args:
        file_path: Path to JSONL file
        filter_fn: Optional predicate applied after the type check
        record_type: Only return rows with this tag

    Returns:
        List of matching record dictionaries

    Raises:
        LedgerError: If the file cannot be read or a complete line is not JSON
    """
    if not file_path.exists():
        return []

    try:
        with open(file_path, 'r') as f:
            lines = f.readlines()
    except IOError as e:
        raise LedgerError(f"Failed to read ledger: {e}")

    records = []
    for line_num, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            if line_num == len(lines) and not raw.endswith("\n"):
                logger.warning(f"Ignoring incomplete last line in {file_path.name}")
                break
            raise LedgerError(f"Invalid JSON in {file_path.name} on line {line_num}: {e}")
        if record_type is not None and record.get("record_type", record_type) != record_type:
            continue
        if filter_fn is None or filter_fn(record):
            records.append(record)

    return records


def replay_latest(records: List[Dict[str, Any]], key: str) -> Dict[str, Dict[str, Any]]:
    """
    Collapse versioned rows to the latest version per key.

    Ids keep the position of their first appearance, so iteration order is
    creation order.
    """
    latest: Dict[str, Dict[str, Any]] = {}
    for record in records:
        latest[record[key]] = record
    return latest


class LedgerStore(Store):
    """Store persisted as JSONL files under one ledger directory."""

    def __init__(self, ledger_dir: Path = LEDGER_DIR):
        super().__init__()
        self.ledger_dir = Path(ledger_dir)
        self._depth = 0
        self._lock_handle = None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth == 0:
                ensure_ledger_dir(self.ledger_dir)
                try:
                    self._lock_handle = open(self.ledger_dir / LOCK_FILE, 'a')
                    fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_EX)
                except (IOError, OSError) as e:
                    raise LedgerError(f"Failed to lock ledger {self.ledger_dir}: {e}")
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
                    self._lock_handle.close()
                    self._lock_handle = None

    # ------------------------------------------------------------------
    # Replay helpers
    # ------------------------------------------------------------------

    def _predictions(self) -> Dict[str, Dict[str, Any]]:
        records = read_records(self.ledger_dir / PREDICTIONS_FILE, record_type="prediction")
        return replay_latest(records, "prediction_id")

    def _forecasters(self) -> Dict[str, Dict[str, Any]]:
        records = read_records(self.ledger_dir / FORECASTERS_FILE, record_type="forecaster")
        return replay_latest(records, "forecaster_id")

    def _scores(self, filter_fn: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Score]:
        records = read_records(self.ledger_dir / SCORES_FILE, filter_fn, record_type="score")
        return [Score.from_dict(r) for r in records]

    def _resolved_markets(self) -> Dict[str, Dict[str, Any]]:
        records = read_records(self.ledger_dir / RESOLVED_MARKETS_FILE, record_type="resolved_market")
        return replay_latest(records, "market_id")

    # ------------------------------------------------------------------
    # Store primitives
    # ------------------------------------------------------------------

    def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        record = self._predictions().get(prediction_id)
        return Prediction.from_dict(record) if record else None

    def get_forecaster(self, forecaster_id: str) -> Optional[Forecaster]:
        record = self._forecasters().get(forecaster_id)
        return Forecaster.from_dict(record) if record else None

    def list_forecasters(self) -> List[Forecaster]:
        return [Forecaster.from_dict(r) for r in self._forecasters().values()]

    def get_active_predictions(self, market_id: str) -> List[Prediction]:
        return [
            Prediction.from_dict(r) for r in self._predictions().values()
            if r.get("market_id") == market_id and r.get("status") == "active"
        ]

    def get_all_active_predictions(self) -> List[Prediction]:
        return [
            Prediction.from_dict(r) for r in self._predictions().values()
            if r.get("status") == "active"
        ]

    def get_predictions_for_forecaster(self, forecaster_id: str) -> List[Prediction]:
        return [
            Prediction.from_dict(r) for r in self._predictions().values()
            if r.get("forecaster_id") == forecaster_id
        ]

    def insert_scores(self, scores: Iterable[Score]) -> None:
        with self.transaction():
            append_records(self.ledger_dir / SCORES_FILE, (s.to_dict() for s in scores), "score")

    def get_scores_for_forecaster(self, forecaster_id: str) -> List[Score]:
        return self._scores(lambda r: r.get("forecaster_id") == forecaster_id)

    def get_market_scores(self, market_id: str) -> List[Score]:
        return self._scores(lambda r: r.get("market_id") == market_id)

    def is_market_resolved(self, market_id: str) -> bool:
        return market_id in self._resolved_markets()

    def get_resolved_market(self, market_id: str) -> Optional[ResolvedMarket]:
        record = self._resolved_markets().get(market_id)
        return ResolvedMarket.from_dict(record) if record else None

    def get_resolved_markets(self, limit: Optional[int] = None) -> List[ResolvedMarket]:
        markets = sorted(
            (ResolvedMarket.from_dict(r) for r in self._resolved_markets().values()),
            key=lambda m: m.resolved_at_utc,
        )
        return markets[:limit] if limit is not None else markets

    def _put_prediction(self, prediction: Prediction) -> None:
        append_record(self.ledger_dir / PREDICTIONS_FILE, prediction.to_dict(), "prediction")

    def _put_forecaster(self, forecaster: Forecaster) -> None:
        append_record(self.ledger_dir / FORECASTERS_FILE, forecaster.to_dict(), "forecaster")

    def _put_resolved_market(self, record: ResolvedMarket) -> None:
        append_record(self.ledger_dir / RESOLVED_MARKETS_FILE, record.to_dict(), "resolved_market")

    def _find_active_prediction(self, forecaster_id: str, market_id: str) -> Optional[Prediction]:
        for record in self._predictions().values():
            if (record.get("forecaster_id") == forecaster_id
                    and record.get("market_id") == market_id
                    and record.get("status") == "active"):
                return Prediction.from_dict(record)
        return None
