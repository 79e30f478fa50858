"""
Command-line interface for the consensus core.

Provides subcommands for submitting and cancelling predictions, reading
aggregated signals, resolving markets, showing the leaderboard and
computing regime stress from signal CSVs.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from src.config.secrets import MissingFeedConfigError, get_feed_api_key, get_feed_base_url
from src.logging_config import configure_logging

from . import aggregation
from . import feed
from . import regime
from . import reporter
from . import resolver
from .config import ConfigError, get_ledger_dir, load_config
from .errors import ConsensusError
from .ledger import LedgerStore


def _open_store(args: argparse.Namespace) -> LedgerStore:
    ledger_dir = Path(args.ledger_dir) if args.ledger_dir else get_ledger_dir(args.config)
    return LedgerStore(ledger_dir)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def cmd_predict(args: argparse.Namespace) -> int:
    """Submit or update a prediction."""
    try:
        store = _open_store(args)
        prediction, created = store.submit_prediction(
            forecaster_id=args.forecaster,
            market_id=args.market,
            probability=args.probability,
            confidence=args.confidence,
            stake=args.stake,
            platform=args.platform,
        )

        action = "Created" if created else "Updated"
        print(f"{action} prediction {prediction.prediction_id}")
        if args.verbose:
            _print_json(prediction.to_dict())
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel an active prediction."""
    try:
        store = _open_store(args)
        prediction = store.cancel_prediction(args.prediction_id, args.forecaster)
        print(f"Cancelled prediction {prediction.prediction_id} on {prediction.market_id}")
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_signal(args: argparse.Namespace) -> int:
    """Show the aggregated signal for one market."""
    try:
        store = _open_store(args)
        default_reputation = args.config["reputation"]["default"]
        signal = aggregation.calculate_market_signal(store, args.market_id, default_reputation)

        if signal is None:
            print(f"No active predictions for {args.market_id}")
            return 0

        _print_json(signal.to_dict())
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_signals(args: argparse.Namespace) -> int:
    """Show aggregated signals for every market with active predictions."""
    try:
        store = _open_store(args)
        default_reputation = args.config["reputation"]["default"]
        signals = aggregation.calculate_all_signals(store, default_reputation)

        if not signals:
            print("No active predictions")
            return 0

        if args.json:
            _print_json([s.to_dict() for s in signals])
            return 0

        print(f"{'Market':<30} {'P(YES)':<8} {'Conf':<8} {'N':<5} {'Stake':<10}")
        print("-" * 65)
        for s in signals:
            print(
                f"{s.market_id:<30} {s.probability:<8.3f} {s.confidence:<8.3f} "
                f"{s.contributor_count:<5} {s.total_stake:<10.2f}"
            )
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _build_feed(args: argparse.Namespace) -> feed.MarketFeed:
    if args.snapshot:
        return feed.JsonFileMarketFeed(Path(args.snapshot))

    feed_config = args.config["feed"]
    feed.configure_retries(int(feed_config["max_retries"]))
    return feed.HTTPMarketFeed(
        get_feed_base_url(),
        api_key=get_feed_api_key(),
        timeout=(10, feed_config["timeout_seconds"]),
    )


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve markets whose outcome the feed reports."""
    try:
        store = _open_store(args)
        market_feed = _build_feed(args)
        results = resolver.check_for_resolutions(
            store,
            market_feed,
            decay_factor=args.config["reputation"]["decay_factor"],
        )

        print(
            f"Checked {results['checked']} market(s): resolved {results['resolved']}, "
            f"scored {results['scored']} prediction(s), failed {results['failed']}"
        )
        return 1 if results["failed"] else 0

    except (ConsensusError, MissingFeedConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_resolve_manual(args: argparse.Namespace) -> int:
    """Resolve one market with an explicit outcome."""
    try:
        store = _open_store(args)
        result = resolver.manually_resolve_market(
            store,
            args.market_id,
            args.outcome,
            platform=args.platform,
            title=args.title,
            decay_factor=args.config["reputation"]["decay_factor"],
        )
        print(f"Resolved {args.market_id} (outcome={args.outcome}) - scored {result['scored']} prediction(s)")
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_leaderboard(args: argparse.Namespace) -> int:
    """Show the leaderboard or a single forecaster's profile."""
    try:
        store = _open_store(args)

        if args.forecaster:
            _print_json(reporter.get_forecaster_profile(store, args.forecaster, recent=args.recent))
            return 0

        if args.json:
            _print_json(reporter.compute_leaderboard(store, limit=args.limit, offset=args.offset))
            return 0

        output_path = Path(args.output) if args.output else None
        report = reporter.generate_leaderboard(
            store, limit=args.limit, offset=args.offset, output_path=output_path
        )
        if output_path:
            print(f"Leaderboard written to {output_path}")
        else:
            print(report)
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_stress(args: argparse.Namespace) -> int:
    """Summarize belief dynamics for one or more signal CSVs."""
    try:
        default_liquidity = args.config["signal_point"]["default_liquidity"]
        summaries: Dict[str, Dict[str, Any]] = {}

        for csv_path in args.csv:
            points = regime.load_signal_csv(Path(csv_path), default_liquidity=default_liquidity)
            summaries[Path(csv_path).stem] = regime.summarize_signal(points, args.config)

        output: Dict[str, Any] = {"signals": summaries}
        if len(summaries) > 1:
            output["stress_index"] = regime.compute_stress_index(list(summaries.values()))

        _print_json(output)
        return 0

    except ConsensusError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="consensus",
        description="Reputation-weighted forecast consensus and regime sensing"
    )

    # Global options
    parser.add_argument(
        "--config",
        help="Path to config file (default: config/consensus.yaml)"
    )
    parser.add_argument(
        "--ledger-dir",
        help="Path to ledger directory (overrides config)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # predict command
    predict_parser = subparsers.add_parser("predict", help="Submit or update a prediction")
    predict_parser.add_argument("--forecaster", required=True, help="Forecaster ID")
    predict_parser.add_argument("--market", required=True, help="Market ID")
    predict_parser.add_argument("--probability", type=float, required=True, help="P(YES) in [0, 1]")
    predict_parser.add_argument("--confidence", type=float, required=True, help="Confidence in [0, 1]")
    predict_parser.add_argument("--stake", type=float, required=True, help="Stake (> 0)")
    predict_parser.add_argument("--platform", default="", help="Market platform")
    predict_parser.set_defaults(func=cmd_predict)

    # cancel command
    cancel_parser = subparsers.add_parser("cancel", help="Cancel an active prediction")
    cancel_parser.add_argument("prediction_id", help="Prediction ID")
    cancel_parser.add_argument("--forecaster", required=True, help="Owning forecaster ID")
    cancel_parser.set_defaults(func=cmd_cancel)

    # signal command
    signal_parser = subparsers.add_parser("signal", help="Show the signal for one market")
    signal_parser.add_argument("market_id", help="Market ID")
    signal_parser.set_defaults(func=cmd_signal)

    # signals command
    signals_parser = subparsers.add_parser("signals", help="Show signals for all markets")
    signals_parser.add_argument("--json", action="store_true", help="Output JSON")
    signals_parser.set_defaults(func=cmd_signals)

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve markets with known outcomes")
    resolve_parser.add_argument("--snapshot", help="JSON market snapshot (default: HTTP feed from env)")
    resolve_parser.set_defaults(func=cmd_resolve)

    # resolve-manual command
    manual_parser = subparsers.add_parser("resolve-manual", help="Resolve one market explicitly")
    manual_parser.add_argument("market_id", help="Market ID")
    manual_parser.add_argument("--outcome", type=int, required=True, choices=[0, 1], help="Outcome")
    manual_parser.add_argument("--title", default="", help="Market title")
    manual_parser.add_argument("--platform", default="", help="Market platform")
    manual_parser.set_defaults(func=cmd_resolve_manual)

    # leaderboard command
    leaderboard_parser = subparsers.add_parser("leaderboard", help="Show forecaster leaderboard")
    leaderboard_parser.add_argument("--limit", type=int, default=50, help="Max entries")
    leaderboard_parser.add_argument("--offset", type=int, default=0, help="Entries to skip")
    leaderboard_parser.add_argument("--forecaster", help="Show one forecaster's profile")
    leaderboard_parser.add_argument("--recent", type=int, default=10, help="Recent scores in profile")
    leaderboard_parser.add_argument("--json", action="store_true", help="Output JSON")
    leaderboard_parser.add_argument("--output", "-o", help="Write markdown report to file")
    leaderboard_parser.set_defaults(func=cmd_leaderboard)

    # stress command
    stress_parser = subparsers.add_parser("stress", help="Regime stress for signal CSVs")
    stress_parser.add_argument("csv", nargs="+", help="Signal CSV file(s)")
    stress_parser.set_defaults(func=cmd_stress)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging()

    try:
        args.config = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
