"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. PeriodAggregator    →  produces ordered PeriodPoint series per buyer
    2. ThresholdEvaluator  →  annotates each series under every methodology
    3. Output serialization →  flattens the annotations into a DataFrame

This is the single entry point for running the engine over a dataset.
Everything else is internal machinery.

Usage:
    from pipeline import ThresholdPipeline

    pipeline = ThresholdPipeline()
    results_df = pipeline.run(transactions_df, drug_name="OXYCODONE")
"""

import pandas as pd
import logging
from typing import Dict, List, Sequence, Tuple

from core.aggregator import PeriodAggregator
from core.methodology import Methodology, load_methodologies
from core.models import PeriodPoint, Transaction
from core.threshold_evaluator import ThresholdEvaluator

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "buyer_id", "drug_name", "period", "granularity", "quantity",
    "transaction_count", "methodology", "baseline", "threshold", "flagged",
]

SeriesKey = Tuple[str, str, str]     # (buyer_id, drug_name, granularity)


class ThresholdPipeline:
    """
    End-to-end suspicious order flagging pipeline.

    Orchestrates aggregation → evaluation → output without exposing
    internal objects to callers.
    """

    def __init__(self, methodology_names: List[str] | None = None, fill_missing_periods: bool = False):
        """
        Args:
            methodology_names: Methodologies to run. Defaults to every
                methodology in config.
            fill_missing_periods: Synthesize zero-quantity periods between
                observed ones before evaluation.
        """
        self.methodologies: List[Methodology] = load_methodologies(methodology_names)
        self.aggregator = PeriodAggregator(fill_missing_periods=fill_missing_periods)
        self.evaluator = ThresholdEvaluator()

        logger.info(
            f"Pipeline initialized. "
            f"Methodologies: {[m.name for m in self.methodologies]}. "
            f"Fill missing periods: {fill_missing_periods}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(
        self,
        transactions: pd.DataFrame | Sequence[Transaction],
        drug_name: str,
        buyer_id: str | None = None,
        transaction_type: str | None = None,
    ) -> pd.DataFrame:
        """
        Run the full flagging pipeline.

        Args:
            transactions: Transaction DataFrame or sequence (see aggregator).
            drug_name: Drug to evaluate.
            buyer_id: Restrict to one buyer. Defaults to every buyer present.
            transaction_type: Transaction code filter. Defaults to purchases.

        Returns:
            DataFrame with one row per (buyer, period, methodology).

        Raises:
            EmptyInputError: If no transactions match the filters.
        """
        logger.info(f"Pipeline starting. Input: {len(transactions):,} transactions.")

        annotated = self.run_series(transactions, drug_name, buyer_id=buyer_id, transaction_type=transaction_type)

        output_df = self._serialize(annotated)
        flagged = int(output_df["flagged"].sum()) if not output_df.empty else 0
        logger.info(f"Pipeline complete. Output rows: {len(output_df):,}. Flagged: {flagged:,}.")

        return output_df

    def run_series(
        self,
        transactions: pd.DataFrame | Sequence[Transaction],
        drug_name: str,
        buyer_id: str | None = None,
        transaction_type: str | None = None,
    ) -> Dict[SeriesKey, List[PeriodPoint]]:
        """
        Run aggregation and evaluation, returning the annotated series.

        Methodologies are grouped by granularity so each granularity is
        aggregated only once.
        """
        by_granularity: Dict[str, List[Methodology]] = {}
        for methodology in self.methodologies:
            by_granularity.setdefault(methodology.granularity, []).append(methodology)

        annotated: Dict[SeriesKey, List[PeriodPoint]] = {}
        for granularity, methodologies in by_granularity.items():
            # --- Stage 1: Aggregation ---
            series_by_buyer = self.aggregator.aggregate_by_buyer(
                transactions, drug_name,
                transaction_type=transaction_type, buyer_id=buyer_id, granularity=granularity,
            )
            logger.info(f"Stage 1 complete ({granularity}). Series: {len(series_by_buyer):,}.")

            # --- Stage 2: Evaluation ---
            for (buyer, drug), series in series_by_buyer.items():
                annotated[(buyer, drug, granularity)] = self.evaluator.evaluate_all(series, methodologies)
            logger.info(f"Stage 2 complete ({granularity}). Methodologies: {[m.name for m in methodologies]}.")

        return annotated

    # -------------------------------------------------------------------------
    # INTERNAL: OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    def _serialize(self, annotated: Dict[SeriesKey, List[PeriodPoint]]) -> pd.DataFrame:
        """Flattens annotated series into a long-format DataFrame."""
        rows = []
        for (_, _, granularity), series in annotated.items():
            for point in series:
                for name, result in point.results.items():
                    rows.append({
                        "buyer_id": point.buyer_id,
                        "drug_name": point.drug_name,
                        "period": point.period.label,
                        "granularity": granularity,
                        "quantity": point.quantity,
                        "transaction_count": point.transaction_count,
                        "methodology": name,
                        "baseline": result.baseline,
                        "threshold": result.threshold,
                        "flagged": result.flagged,
                    })

        if not rows:
            return pd.DataFrame(columns=RESULT_COLUMNS)

        df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
        # Period labels are zero-padded ISO strings, so lexical order is calendar order.
        df = df.sort_values(["buyer_id", "methodology", "period"]).reset_index(drop=True)
        return df
