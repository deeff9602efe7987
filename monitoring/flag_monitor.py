"""
flag_monitor.py
------------------
Flag rate monitoring for threshold engine output.

Summarizes how often each methodology fires and raises a review alert for
any buyer whose share of flagged periods is persistently high. A buyer that
trips a methodology in most evaluated months warrants a closer look than
one isolated spike.

Only periods with a defined baseline count toward a rate; periods with
insufficient history were never eligible to flag.

All thresholds come from config.yaml.
"""

import pandas as pd
from dataclasses import dataclass, field
from typing import List

from config.config_loader import get_monitoring_config


@dataclass
class FlagAlert:
    """A single buyer-level flag rate alert."""
    severity: str                    # "WARNING" | "CRITICAL"
    buyer_id: str
    methodology: str
    evaluated_periods: int
    flagged_periods: int
    flag_rate: float
    threshold: float
    message: str


@dataclass
class FlagReport:
    """Flag monitoring report, one per run."""
    run_timestamp: str
    methodology_summary: pd.DataFrame
    alerts: List[FlagAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class FlagRateMonitor:
    """
    Monitors flag rates in pipeline output.

    Usage:
        monitor = FlagRateMonitor()
        report = monitor.run(results_df)
    """

    def __init__(self):
        self.config = get_monitoring_config()
        self.warning_rate = self.config["flag_rate_warning"]
        self.critical_rate = self.config["flag_rate_critical"]
        self.min_evaluated_periods = self.config["min_evaluated_periods"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, results_df: pd.DataFrame) -> FlagReport:
        """
        Args:
            results_df: Output of ThresholdPipeline.run(). Must have columns
                buyer_id, methodology, baseline, flagged.

        Returns:
            FlagReport with per-methodology summary and buyer alerts.
        """
        required_cols = {"buyer_id", "methodology", "baseline", "flagged"}
        missing = required_cols - set(results_df.columns)
        if missing:
            raise ValueError(f"Missing required columns: {sorted(missing)}")

        df = results_df.copy()
        df["evaluated"] = df["baseline"].notna()
        df["flagged"] = df["flagged"].astype(bool)

        methodology_summary = self._summarize_methodologies(df)
        alerts = self._check_buyer_rates(df)

        summary = {
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "flagged_periods": int(df["flagged"].sum()),
            "buyers_flagged": int(df.loc[df["flagged"], "buyer_id"].nunique()),
        }

        return FlagReport(
            run_timestamp=pd.Timestamp.now().isoformat(),
            methodology_summary=methodology_summary,
            alerts=alerts,
            summary=summary,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: METHODOLOGY SUMMARY
    # -------------------------------------------------------------------------

    @staticmethod
    def _summarize_methodologies(df: pd.DataFrame) -> pd.DataFrame:
        """Evaluated periods, flagged periods and flag rate per methodology."""
        columns = ["methodology", "periods", "evaluated_periods", "flagged_periods", "flag_rate"]
        if df.empty:
            return pd.DataFrame(columns=columns)

        summary = df.groupby("methodology").agg(
            periods=("flagged", "size"),
            evaluated_periods=("evaluated", "sum"),
            flagged_periods=("flagged", "sum"),
        ).reset_index()
        summary["flag_rate"] = (
            summary["flagged_periods"] / summary["evaluated_periods"].where(summary["evaluated_periods"] > 0)
        ).fillna(0.0).round(4)
        return summary[columns]

    # -------------------------------------------------------------------------
    # INTERNAL: BUYER FLAG RATES
    # -------------------------------------------------------------------------

    def _check_buyer_rates(self, df: pd.DataFrame) -> List[FlagAlert]:
        alerts = []
        evaluated = df[df["evaluated"]]
        if evaluated.empty:
            return alerts

        rates = evaluated.groupby(["buyer_id", "methodology"]).agg(
            evaluated_periods=("flagged", "size"),
            flagged_periods=("flagged", "sum"),
        ).reset_index()

        for row in rates.itertuples(index=False):
            # Need enough evaluated periods for a rate to mean anything
            if row.evaluated_periods < self.min_evaluated_periods:
                continue

            rate = row.flagged_periods / row.evaluated_periods
            if rate <= self.warning_rate:
                continue

            severity = "CRITICAL" if rate > self.critical_rate else "WARNING"
            threshold = self.critical_rate if severity == "CRITICAL" else self.warning_rate
            alerts.append(FlagAlert(
                severity=severity,
                buyer_id=str(row.buyer_id),
                methodology=str(row.methodology),
                evaluated_periods=int(row.evaluated_periods),
                flagged_periods=int(row.flagged_periods),
                flag_rate=round(rate, 4),
                threshold=threshold,
                message=(
                    f"Buyer {row.buyer_id} flagged in {int(row.flagged_periods)} of "
                    f"{int(row.evaluated_periods)} evaluated periods under {row.methodology} "
                    f"({rate:.0%}, threshold {threshold:.0%})."
                ),
            ))

        return alerts
