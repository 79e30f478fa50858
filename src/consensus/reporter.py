"""
Leaderboard and forecaster reports.

Ranks forecasters by reputation and renders markdown summaries of the
leaderboard and recent resolutions.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from .errors import NotFoundError
from .models import Forecaster, parse_iso_datetime
from .store import Store


def _ranked(store: Store) -> List[Forecaster]:
    # Highest reputation first; ties by resolved count, then id
    return sorted(
        store.list_forecasters(),
        key=lambda f: (-f.reputation, -f.resolved_count, f.forecaster_id),
    )


def compute_leaderboard(store: Store, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    """
    Rank forecasters by reputation.

    Args:
        store: Forecaster store
        limit: Maximum entries to return
        offset: Number of top entries to skip

    Returns:
        Dict with entries (rank starts at offset + 1), total_forecasters
        and generated_at_utc
    """
    ranked = _ranked(store)
    page = ranked[offset:offset + limit]

    entries = []
    for index, forecaster in enumerate(page):
        entries.append({
            "rank": offset + index + 1,
            "forecaster_id": forecaster.forecaster_id,
            "reputation": forecaster.reputation,
            "total_stake": forecaster.total_stake,
            "prediction_count": forecaster.prediction_count,
            "resolved_count": forecaster.resolved_count,
            "avg_brier_score": forecaster.avg_brier_score,
        })

    return {
        "entries": entries,
        "total_forecasters": len(ranked),
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
    }


def format_leaderboard_table(entries: List[Dict[str, Any]]) -> str:
    """
    Format leaderboard entries as markdown table.

    Args:
        entries: Entries from compute_leaderboard()

    Returns:
        Markdown table string
    """
    if not entries:
        return "*No forecasters yet*"

    lines = [
        "| Rank | Forecaster | Reputation | Avg Brier | Resolved | Stake |",
        "|------|------------|------------|-----------|----------|-------|",
    ]

    for e in entries:
        lines.append(
            f"| {e['rank']} | {e['forecaster_id']} | {e['reputation']:.4f} | "
            f"{e['avg_brier_score']:.4f} | {e['resolved_count']} | {e['total_stake']:.2f} |"
        )

    return "\n".join(lines)


def format_resolutions_table(store: Store, limit: int = 10) -> str:
    """Markdown table of the most recent market resolutions."""
    markets = store.get_resolved_markets()
    if not markets:
        return "*No resolved markets*"

    recent = list(reversed(markets))[:limit]

    lines = [
        "| Market | Title | Outcome | Resolved | Scored |",
        "|--------|-------|---------|----------|--------|",
    ]

    for m in recent:
        scored = len(store.get_market_scores(m.market_id))
        title = m.title or "-"
        outcome = "YES" if m.outcome == 1 else "NO"
        lines.append(f"| {m.market_id} | {title} | {outcome} | {m.resolved_at_utc} | {scored} |")

    return "\n".join(lines)


def generate_leaderboard(
    store: Store,
    limit: int = 50,
    offset: int = 0,
    output_path: Optional[Path] = None
) -> str:
    """
    Generate the markdown leaderboard report.

    Args:
        store: Forecaster store
        limit: Maximum leaderboard entries
        offset: Leaderboard offset
        output_path: If given, the report is also written there

    Returns:
        Markdown report
    """
    leaderboard = compute_leaderboard(store, limit=limit, offset=offset)

    lines = [
        "# Forecaster Leaderboard",
        "",
        f"Generated: {leaderboard['generated_at_utc']}",
        f"Forecasters: {leaderboard['total_forecasters']}",
        "",
        format_leaderboard_table(leaderboard["entries"]),
        "",
        "## Recent Resolutions",
        "",
        format_resolutions_table(store),
        "",
    ]
    report = "\n".join(lines)

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            f.write(report)

    return report


def get_forecaster_profile(store: Store, forecaster_id: str, recent: int = 10) -> Dict[str, Any]:
    """
    Stats, rank and most recent scores for one forecaster.

    Args:
        store: Forecaster store
        forecaster_id: Forecaster to look up
        recent: Number of recent scores to include

    Returns:
        Dict with forecaster, rank and recent_scores (newest first)

    Raises:
        NotFoundError: If the forecaster does not exist
    """
    forecaster = store.get_forecaster(forecaster_id)
    if forecaster is None:
        raise NotFoundError(f"Forecaster not found: {forecaster_id}")

    ranked_ids = [f.forecaster_id for f in _ranked(store)]
    scores = sorted(
        store.get_scores_for_forecaster(forecaster_id),
        key=lambda s: parse_iso_datetime(s.resolved_at_utc),
        reverse=True,
    )

    return {
        "forecaster": forecaster.to_dict(),
        "rank": ranked_ids.index(forecaster_id) + 1,
        "recent_scores": [
            {
                "market_id": s.market_id,
                "predicted_probability": s.predicted_probability,
                "actual_outcome": s.actual_outcome,
                "brier_score": s.brier_score,
                "stake": s.stake,
                "resolved_at_utc": s.resolved_at_utc,
            }
            for s in scores[:recent]
        ],
    }
