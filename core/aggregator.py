"""
aggregator.py
--------------
Period aggregation layer.

Turns raw per-transaction records into an ordered period series for a
(buyer, drug) pair. It answers one question:

    "How many dosage units did this buyer order in each period?"

Output: a chronologically ordered list of PeriodPoint, one per period
with at least one qualifying transaction. These are consumed by the
ThresholdEvaluator.

Design decisions:
    - Input may be a DataFrame (canonical or raw ARCOS column names) or
      any sequence of Transaction objects. Both are normalized to one frame.
    - Only the purchase transaction code participates by default. Returns
      and adjustments would otherwise net against real orders.
    - Empty months are not synthesized unless fill_missing_periods is set.
      Gaps change the composition of trailing windows, so this is opt-in.
"""

import logging
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from core.exceptions import EmptyInputError
from core.models import PeriodKey, PeriodPoint, Transaction, normalize_drug_name
from config.config_loader import get_transaction_config

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["buyer_id", "drug_name", "transaction_code", "transaction_date", "dosage_units"]


class PeriodAggregator:
    """
    Aggregates transactions into PeriodPoint series.

    Usage:
        aggregator = PeriodAggregator()
        series = aggregator.aggregate(transactions_df, drug_name="OXYCODONE")
    """

    def __init__(self, fill_missing_periods: bool = False):
        """
        Args:
            fill_missing_periods: Insert zero-quantity periods between the
                first and last observed period of each series.
        """
        self.config = get_transaction_config()
        self.purchase_code = str(self.config["purchase_code"])
        self.default_granularity = self.config["default_granularity"]
        self.column_aliases = self.config.get("column_aliases", {})
        self.date_formats = self.config.get("date_formats", [])
        self.fill_missing_periods = fill_missing_periods

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def aggregate(
        self,
        transactions: pd.DataFrame | Sequence[Transaction],
        drug_name: str,
        transaction_type: str | None = None,
        buyer_id: str | None = None,
        granularity: str | None = None,
    ) -> List[PeriodPoint]:
        """
        Build a single ordered period series.

        Args:
            transactions: DataFrame with columns buyer_id, drug_name,
                transaction_code, transaction_date, dosage_units (or their
                ARCOS aliases), or a sequence of Transaction.
            drug_name: Drug to keep. Matched exactly after case normalization.
            transaction_type: Transaction code to keep. Defaults to the
                configured purchase code.
            buyer_id: Optional buyer to keep. When omitted, every matching
                buyer's quantities are summed into one series.
            granularity: "month" or "day". Defaults to config.

        Returns:
            List of PeriodPoint sorted ascending by period.

        Raises:
            EmptyInputError: If no transactions match the filters.
            ValueError: If the input is malformed.
        """
        granularity = self._resolve_granularity(granularity)
        df = self._filter(self._prepare(transactions), drug_name, transaction_type, buyer_id)

        drug = normalize_drug_name(drug_name)
        series_buyer = buyer_id if buyer_id is not None else _describe_buyers(df)
        series = self._build_series(df, series_buyer, drug, granularity)

        logger.debug(
            f"Aggregated {len(df):,} transactions into {len(series):,} {granularity} periods "
            f"for buyer={series_buyer}, drug={drug}."
        )
        return series

    def aggregate_by_buyer(
        self,
        transactions: pd.DataFrame | Sequence[Transaction],
        drug_name: str,
        transaction_type: str | None = None,
        buyer_id: str | None = None,
        granularity: str | None = None,
    ) -> Dict[Tuple[str, str], List[PeriodPoint]]:
        """
        Build one independent series per buyer.

        Same filters as aggregate(). Returns a dict keyed by
        (buyer_id, drug_name), ordered by buyer_id.

        Raises:
            EmptyInputError: If no transactions match the filters.
        """
        granularity = self._resolve_granularity(granularity)
        df = self._filter(self._prepare(transactions), drug_name, transaction_type, buyer_id)
        drug = normalize_drug_name(drug_name)

        results: Dict[Tuple[str, str], List[PeriodPoint]] = {}
        for buyer, group in df.groupby("buyer_id", sort=True):
            results[(buyer, drug)] = self._build_series(group, buyer, drug, granularity)

        logger.debug(f"Aggregated {len(df):,} transactions into {len(results):,} buyer series for drug={drug}.")
        return results

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, transactions: pd.DataFrame | Sequence[Transaction]) -> pd.DataFrame:
        """
        Normalizes input to a frame with canonical columns and types.
        The caller's frame is never modified.
        """
        if isinstance(transactions, pd.DataFrame):
            df = transactions.rename(columns=self.column_aliases)
        else:
            df = transactions_to_frame(transactions)

        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        df = df[REQUIRED_COLUMNS].copy()
        if df.empty:
            return df

        if df["buyer_id"].isna().any() or (df["buyer_id"].astype(str).str.strip() == "").any():
            raise ValueError("buyer_id contains missing values")
        df["buyer_id"] = df["buyer_id"].astype(str).str.strip()
        df["drug_name"] = df["drug_name"].map(normalize_drug_name)
        df["transaction_code"] = df["transaction_code"].astype(str).str.strip()
        df["transaction_date"] = self._parse_dates(df["transaction_date"])

        quantities = pd.to_numeric(df["dosage_units"], errors="coerce")
        if quantities.isna().any():
            raise ValueError("dosage_units contains missing or non-numeric values")
        if (quantities < 0).any():
            raise ValueError("dosage_units must be non-negative")
        if (quantities % 1 != 0).any():
            raise ValueError("dosage_units must be whole numbers")
        df["dosage_units"] = quantities.astype("int64")

        return df

    def _parse_dates(self, dates: pd.Series) -> pd.Series:
        """Parses transaction dates, trying each configured format in order."""
        if pd.api.types.is_datetime64_any_dtype(dates):
            return dates

        as_text = dates.astype(str).str.strip()
        # MMDDYYYY read as an integer loses its leading zero.
        as_text = as_text.where(~as_text.str.fullmatch(r"\d{7}"), as_text.str.zfill(8))
        for fmt in self.date_formats:
            parsed = pd.to_datetime(as_text, format=fmt, errors="coerce")
            if not parsed.isna().any():
                return parsed

        parsed = pd.to_datetime(dates, errors="coerce")
        if parsed.isna().any():
            bad = as_text[parsed.isna()].iloc[0]
            raise ValueError(f"Unparseable transaction_date: '{bad}'")
        return parsed

    def _filter(
        self, df: pd.DataFrame, drug_name: str, transaction_type: str | None, buyer_id: str | None
    ) -> pd.DataFrame:
        """Applies the transaction code, drug and buyer filters."""
        code = self.purchase_code if transaction_type is None else str(transaction_type).strip()
        drug = normalize_drug_name(drug_name)

        if not df.empty:
            mask = (df["transaction_code"] == code) & (df["drug_name"] == drug)
            if buyer_id is not None:
                mask &= df["buyer_id"] == str(buyer_id)
            df = df[mask]

        if df.empty:
            filters = f"drug_name={drug}, transaction_type={code}"
            if buyer_id is not None:
                filters += f", buyer_id={buyer_id}"
            raise EmptyInputError(f"No transactions match the filters ({filters})")

        return df

    def _resolve_granularity(self, granularity: str | None) -> str:
        granularity = granularity or self.default_granularity
        if granularity not in ("month", "day"):
            raise ValueError(f"granularity must be 'month' or 'day', got '{granularity}'")
        return granularity

    # -------------------------------------------------------------------------
    # INTERNAL: SERIES CONSTRUCTION
    # -------------------------------------------------------------------------

    def _build_series(
        self, df: pd.DataFrame, buyer_id: str, drug_name: str, granularity: str
    ) -> List[PeriodPoint]:
        """Groups one filtered frame by calendar period and sums quantity."""
        dates = df["transaction_date"]
        keys = [dates.dt.year.rename("year"), dates.dt.month.rename("month")]
        if granularity == "day":
            keys.append(dates.dt.day.rename("day"))

        # groupby sorts keys ascending, which is calendar order.
        grouped = df.groupby(keys, sort=True)["dosage_units"].agg(["sum", "count"])

        series = [
            PeriodPoint(
                buyer_id=buyer_id,
                drug_name=drug_name,
                period=PeriodKey(*(int(k) for k in key)),
                quantity=int(row["sum"]),
                transaction_count=int(row["count"]),
            )
            for key, row in grouped.iterrows()
        ]

        if self.fill_missing_periods:
            series = _fill_gaps(series)

        return series


# =============================================================================
# HELPERS
# =============================================================================

def transactions_to_frame(transactions: Sequence[Transaction]) -> pd.DataFrame:
    """Converts Transaction objects to a canonical DataFrame."""
    rows = [
        {
            "buyer_id": t.buyer_id,
            "drug_name": t.drug_name,
            "transaction_code": t.transaction_code,
            "transaction_date": pd.Timestamp(t.transaction_date),
            "dosage_units": t.dosage_units,
        }
        for t in transactions
    ]
    return pd.DataFrame(rows, columns=REQUIRED_COLUMNS)


def _describe_buyers(df: pd.DataFrame) -> str:
    """Identity for a series pooled across buyers."""
    buyers = df["buyer_id"].unique()
    return str(buyers[0]) if len(buyers) == 1 else "ALL"


def _fill_gaps(series: List[PeriodPoint]) -> List[PeriodPoint]:
    """Inserts zero-quantity points for periods with no transactions."""
    if not series:
        return series

    filled: List[PeriodPoint] = []
    template = series[0]
    for point in series:
        if filled:
            cursor = filled[-1].period.next()
            while cursor < point.period:
                filled.append(PeriodPoint(
                    buyer_id=template.buyer_id,
                    drug_name=template.drug_name,
                    period=cursor,
                    quantity=0,
                    transaction_count=0,
                ))
                cursor = cursor.next()
        filled.append(point)
    return filled
