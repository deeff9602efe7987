"""
threshold_evaluator.py
-----------------------
Windowed threshold evaluation.

Applies a Methodology to an ordered PeriodPoint series. For each period:

    1. Take the trailing window of quantities (strictly prior periods, or
       ending with the current one for trailing_inclusive).
    2. Baseline = max or mean of that window, or a fixed constant.
       An empty window, or a short one when the methodology requires a full
       window, leaves the baseline undefined.
    3. Threshold = baseline * multiplier.
    4. Flag when quantity strictly exceeds the threshold. Ties never flag.

Evaluation never mutates its input. Each output point is a copy carrying
the previous annotations plus one new ThresholdResult, so methodologies can
be layered on the same series in any order.
"""

import logging
from typing import List, Sequence

import numpy as np
import pandas as pd

from core.methodology import BaselineFunction, Methodology, WindowMode
from core.models import PeriodPoint, ThresholdResult

logger = logging.getLogger(__name__)


class ThresholdEvaluator:
    """
    Stateless evaluator. One instance can serve any number of series.

    Usage:
        evaluator = ThresholdEvaluator()
        annotated = evaluator.evaluate(series, Methodology.from_config("max_monthly_trailing_6"))
    """

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def evaluate(self, series: Sequence[PeriodPoint], methodology: Methodology) -> List[PeriodPoint]:
        """
        Annotate every period of a series under one methodology.

        Args:
            series: PeriodPoints strictly ascending by period, all at the
                methodology's granularity.
            methodology: The rule to apply.

        Returns:
            New list of PeriodPoint, same order and length as the input.

        Raises:
            ValueError: If the series is out of order, has duplicate periods,
                or does not match the methodology's granularity.
        """
        self._check_series(series, methodology)
        if not series:
            return []

        quantities = pd.Series([p.quantity for p in series], dtype="float64")
        baselines = self._compute_baselines(quantities, methodology)
        thresholds = baselines * methodology.multiplier
        # NaN comparisons are False, so undefined baselines never flag.
        flags = (quantities > thresholds).to_numpy()

        annotated = []
        for point, baseline, threshold, flagged in zip(series, baselines, thresholds, flags):
            defined = not np.isnan(baseline)
            annotated.append(point.with_result(ThresholdResult(
                methodology=methodology.name,
                baseline=float(baseline) if defined else None,
                threshold=float(threshold) if defined else None,
                flagged=bool(flagged) if defined else False,
            )))

        logger.debug(
            f"{methodology.name}: {int(flags.sum())} of {len(series)} periods flagged "
            f"({int(baselines.isna().sum())} with insufficient history)."
        )
        return annotated

    def evaluate_all(self, series: Sequence[PeriodPoint], methodologies: Sequence[Methodology]) -> List[PeriodPoint]:
        """Applies several methodologies in turn, accumulating annotations."""
        annotated = list(series)
        for methodology in methodologies:
            annotated = self.evaluate(annotated, methodology)
        return annotated

    # -------------------------------------------------------------------------
    # INTERNAL: BASELINES
    # -------------------------------------------------------------------------

    @staticmethod
    def _compute_baselines(quantities: pd.Series, methodology: Methodology) -> pd.Series:
        """
        Per-period baseline, NaN where the window holds too little history.

        For trailing windows the quantities are shifted by one period first,
        so the rolling window at i covers i-W .. i-1. The shifted-in NaN is
        not counted as an observation, which gives the empty window at i=0.
        """
        if methodology.baseline_fn is BaselineFunction.CONSTANT:
            return pd.Series(float(methodology.constant_value), index=quantities.index)

        window = methodology.window_length
        source = quantities.shift(1) if methodology.window_mode is WindowMode.TRAILING else quantities
        # Full-window trailing rules first resolve at index W (period W+1).
        min_periods = window if methodology.requires_full_window else 1
        rolling = source.rolling(window=window, min_periods=min_periods)

        if methodology.baseline_fn is BaselineFunction.MAX:
            return rolling.max()
        return rolling.mean()

    # -------------------------------------------------------------------------
    # INTERNAL: VALIDATION
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_series(series: Sequence[PeriodPoint], methodology: Methodology) -> None:
        previous = None
        for point in series:
            if point.period.granularity != methodology.granularity:
                raise ValueError(
                    f"Methodology '{methodology.name}' expects {methodology.granularity} periods, "
                    f"got {point.period.granularity} period {point.period}"
                )
            if previous is not None and not previous < point.period:
                raise ValueError(
                    f"Series must be strictly ascending by period: {previous} is followed by {point.period}"
                )
            previous = point.period
