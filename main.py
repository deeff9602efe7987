"""
main.py
--------
Entry point for the Suspicious Order Threshold Engine.

Reads a transaction CSV, runs every configured threshold methodology for
one drug, and writes the annotated periods to the outputs/ folder.

Usage (from the project root):
    python main.py --input arcos_buyer.csv --drug OXYCODONE

    # With optional arguments:
    python main.py --input data.csv --drug HYDROCODONE --buyer BR1234567
    python main.py --input data.csv --drug OXYCODONE --methodology max_monthly_trailing_6
    python main.py --input data.csv --drug OXYCODONE --flagged-only --run-flag-monitor
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import ThresholdPipeline
from core.exceptions import ConfigurationError, EmptyInputError
from monitoring.flag_monitor import FlagRateMonitor


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Suspicious Order Threshold Engine: flag pharmaceutical orders that exceed trailing-window thresholds."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to the transactions CSV (canonical or ARCOS column names)."
    )
    parser.add_argument(
        "--drug", type=str, required=True,
        help="Drug name to evaluate, e.g. OXYCODONE. Case-insensitive."
    )
    parser.add_argument(
        "--buyer", type=str, default=None,
        help="Restrict to a single buyer identifier. Defaults to every buyer in the file."
    )
    parser.add_argument(
        "--transaction-code", type=str, default=None,
        help="Transaction code to include. Defaults to the configured purchase code (S)."
    )
    parser.add_argument(
        "--methodology", type=str, action="append", default=None,
        help="Methodology to run (repeatable). Defaults to every configured methodology."
    )
    parser.add_argument(
        "--fill-missing-periods", action="store_true", default=False,
        help="Treat periods with no orders as zero-quantity periods."
    )
    parser.add_argument(
        "--flagged-only", action="store_true", default=False,
        help="Only write flagged periods to the output file."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--run-flag-monitor", action="store_true", default=False,
        help="Also run the flag rate monitor and report buyers to review."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load transactions ---
    logger.info(f"Loading transactions from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    # Identifiers and ARCOS dates must keep their leading zeros.
    transactions = pd.read_csv(args.input, dtype=str)
    logger.info(f"Loaded {len(transactions):,} transactions.")

    # --- Run pipeline ---
    try:
        pipeline = ThresholdPipeline(
            methodology_names=args.methodology,
            fill_missing_periods=args.fill_missing_periods,
        )
        results = pipeline.run(
            transactions, args.drug,
            buyer_id=args.buyer, transaction_type=args.transaction_code,
        )
    except EmptyInputError as e:
        logger.error(f"No matching orders found for the given filters. {e}")
        return 1
    except (ConfigurationError, KeyError) as e:
        logger.error(f"Invalid methodology configuration: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Malformed transaction data: {e}")
        return 1

    output = results[results["flagged"]].copy() if args.flagged_only else results

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_path = os.path.join(output_dir, f"threshold_results_{timestamp}.csv")
    output.to_csv(results_path, index=False)
    logger.info(f"Results saved to: {results_path}")

    _print_summary(results)

    # --- Optional: Flag rate monitoring ---
    if args.run_flag_monitor:
        logger.info("Running flag rate monitor...")
        report = FlagRateMonitor().run(results)

        logger.info(f"Flag Report: {report.summary}")
        for alert in report.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.methodology}] {alert.severity}: {alert.message}")
        if not report.alerts:
            logger.info("No buyers exceeded the flag rate thresholds.")

    return 0


def _print_summary(df: pd.DataFrame):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No periods to display.\n")
        return

    print("\n" + "=" * 80)
    print("  SUSPICIOUS ORDER SUMMARY")
    print("=" * 80)

    print("\n  Flagged Periods by Methodology:")
    print("  " + "-" * 70)
    for methodology in df["methodology"].unique():
        subset = df[df["methodology"] == methodology]
        evaluated = subset["baseline"].notna().sum()
        flagged = subset["flagged"].sum()
        print(f"    {methodology:34s}  {flagged:>5,} flagged / {evaluated:>5,} evaluated")

    flagged_rows = df[df["flagged"]]
    print(f"\n  Buyers with at least one flagged period: {flagged_rows['buyer_id'].nunique():,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
