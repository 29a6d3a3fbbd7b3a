from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from sqlalchemy.engine import Engine

from btc_treasury.config import get_database_path
from btc_treasury.errors import NoBitcoinPriceAvailable, UpstreamUnavailable
from btc_treasury.io import bitcoin_prices, stock_prices
from btc_treasury.io.database import ensure_schema, get_engine
from btc_treasury.io.holdings import seed_database
from btc_treasury.io.reporting import export_treasury_report, treasury_frame
from btc_treasury.io.treasury import get_treasury_data
from btc_treasury.logic.market_hours import is_market_open, market_status
from btc_treasury.scheduler import RefreshScheduler


logger = logging.getLogger(__name__)

COMMANDS = ("serve", "refresh", "report", "history", "market-status")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for tracker commands."""
    parser = argparse.ArgumentParser(description="Bitcoin treasury price tracker")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the refresh scheduler until interrupted.")
    refresh = subparsers.add_parser("refresh", help="Refresh Bitcoin and stock prices once.")
    refresh.add_argument(
        "--force-stocks",
        action="store_true",
        help="Refresh stock prices even when the market is closed.",
    )
    report = subparsers.add_parser("report", help="Export treasury metrics.")
    report.add_argument("--output", type=Path, help="Output path (.xlsx or .csv).")
    history = subparsers.add_parser("history", help="Show stored price history.")
    history.add_argument("--ticker", help="Stock ticker; omit for Bitcoin.")
    history.add_argument("--hours", type=float, default=24.0, help="Look-back window in hours.")
    subparsers.add_parser("market-status", help="Show whether the US market is open.")
    if not argv:
        argv = ["serve"]
    return parser.parse_args(argv)


def _init_engine(seed: bool = True) -> Engine:
    """Initialize the SQLite engine, schema and seed companies."""
    db_path = get_database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(str(db_path))
    logger.info("Using SQLite database at %s", db_path)
    ensure_schema(engine)
    if seed:
        seed_database(engine)
    return engine


def run_manual_refresh(
    engine: Engine,
    include_stocks: bool | None = None,
    market_open: Callable[[], bool] = is_market_open,
) -> dict[str, object]:
    """Refresh Bitcoin, then stocks when the market is open or forced.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        include_stocks (bool | None): Force (True) or skip (False) the stock
            refresh; None follows the market-hours check.
        market_open (Callable[[], bool]): Market-hours check.

    Returns:
        dict[str, object]: Market state, stored Bitcoin price and stock summary.
    """
    is_open = market_open()
    point = bitcoin_prices.update_price(engine)
    refresh_stocks = is_open if include_stocks is None else include_stocks
    summary = None
    if refresh_stocks:
        summary = stock_prices.update_all_stock_prices(engine)
    else:
        logger.info("Market closed; skipping stock price refresh")
    return {
        "market_open": is_open,
        "bitcoin_price": point.price,
        "stocks": summary,
    }


def run_serve() -> int:
    """Run the scheduler until SIGINT or SIGTERM."""
    engine = _init_engine()
    scheduler = RefreshScheduler(engine)
    stop_event = threading.Event()

    def _request_stop(signum: int, _frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    scheduler.start()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        scheduler.stop()
    return 0


def run_report(results_dir: Path, output: Path | None = None) -> int:
    """Export the treasury report and print a summary table."""
    engine = _init_engine()
    try:
        views = get_treasury_data(engine)
    except NoBitcoinPriceAvailable as exc:
        logger.error("Treasury data not ready: %s; run 'refresh' first", exc)
        return 1
    output_path = output or results_dir / "treasury_report.xlsx"
    export_treasury_report(views, output_path)
    frame = treasury_frame(views)
    print(frame.to_string(index=False, na_rep="-"))
    print(f"\nBitcoin price: ${views[0].bitcoin_price:,.2f}" if views else "\nNo companies stored")
    return 0


def run_history(ticker: str | None, hours: float) -> int:
    """Print stored price history, newest first."""
    engine = _init_engine(seed=False)
    if ticker:
        points = stock_prices.get_price_history(engine, ticker, hours)
        label = ticker.strip().upper()
    else:
        points = bitcoin_prices.get_price_history(engine, hours)
        label = "BTC"
    if not points:
        print(f"No {label} prices stored in the last {hours:g} hours")
        return 0
    for point in points:
        print(f"{point.timestamp.isoformat()}  {label}  {point.price:,.4f} {point.currency}")
    return 0


def run_command(args: argparse.Namespace, results_dir: Path) -> int:
    """Dispatch a parsed command and return the process exit code."""
    if args.command == "serve":
        return run_serve()
    if args.command == "refresh":
        engine = _init_engine()
        try:
            result = run_manual_refresh(engine, include_stocks=True if args.force_stocks else None)
        except UpstreamUnavailable as exc:
            logger.error("Failed to update prices: %s", exc)
            return 1
        logger.info("Manual refresh complete: %s", result)
        return 0
    if args.command == "report":
        return run_report(results_dir, args.output)
    if args.command == "history":
        return run_history(args.ticker, args.hours)
    status = market_status(datetime.now(UTC))
    print(status["message"])
    return 0


def _ensure_base_directories() -> tuple[Path, Path, bool, bool]:
    """Ensure the root data/results directories exist.

    Args:
        None

    Returns:
        tuple[Path, Path, bool, bool]: Data path, results path, and creation flags.
    """
    root = Path(__file__).resolve().parent
    data_root = root / "data"
    results_root = root / "results"
    data_created = not data_root.exists()
    results_created = not results_root.exists()
    data_root.mkdir(parents=True, exist_ok=True)
    results_root.mkdir(parents=True, exist_ok=True)
    return data_root, results_root, data_created, results_created


def _build_results_dir(results_root: Path) -> Path:
    """Create a timestamped results directory for the current run.

    Args:
        results_root (Path): Base directory for run outputs.

    Returns:
        Path: Directory path for this run's outputs.
    """
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    run_dir = results_root / timestamp
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Created results directory: %s", run_dir)
    return run_dir


if __name__ == "__main__":
    data_root, results_root, data_created, results_created = _ensure_base_directories()
    results_dir = _build_results_dir(results_root)
    log_path = results_dir / "run.log"
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG, handlers=[console_handler, file_handler])
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    if data_created:
        logger.info("Created data directory: %s", data_root)
    if results_created:
        logger.info("Created results directory: %s", results_root)
    logger.info("Run output directory: %s", results_dir)
    args = _parse_args(sys.argv[1:])
    sys.exit(run_command(args, results_dir))
