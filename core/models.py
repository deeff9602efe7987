"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: One reported order event. Read-only input to the aggregator.

- PeriodKey: Calendar bucket (month or day) used as the grouping key.

- PeriodPoint: One aggregated observation for a (buyer, drug) series.
  Produced by the aggregator, annotated by the threshold evaluator.

- ThresholdResult: Outcome of one methodology for one period.
"""

from dataclasses import dataclass, field
from datetime import date
from functools import total_ordering

import pandas as pd


@dataclass(frozen=True)
class Transaction:
    """
    A single reported order. Immutable once constructed.

    drug_name is normalized to upper case so filters never depend on how
    the upstream source capitalized it.
    """

    buyer_id: str
    drug_name: str
    transaction_code: str
    transaction_date: date
    dosage_units: int                # Dosage units ordered. Must be >= 0.

    def __post_init__(self):
        object.__setattr__(self, "drug_name", normalize_drug_name(self.drug_name))
        if self.dosage_units < 0:
            raise ValueError(
                f"dosage_units must be non-negative, got {self.dosage_units} "
                f"for buyer {self.buyer_id} on {self.transaction_date}"
            )


@total_ordering
@dataclass(frozen=True)
class PeriodKey:
    """
    A (year, month) or (year, month, day) calendar bucket.

    day is None for month-level keys. Ordering is calendar order; a month
    key sorts before any day key inside that month.
    """

    year: int
    month: int
    day: int | None = None

    @property
    def granularity(self) -> str:
        return "month" if self.day is None else "day"

    @property
    def label(self) -> str:
        if self.day is None:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def _sort_key(self) -> tuple[int, int, int]:
        return (self.year, self.month, 0 if self.day is None else self.day)

    def __lt__(self, other: "PeriodKey") -> bool:
        if not isinstance(other, PeriodKey):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def to_timestamp(self) -> pd.Timestamp:
        """First instant of the period."""
        return pd.Timestamp(year=self.year, month=self.month, day=self.day or 1)

    def next(self) -> "PeriodKey":
        """The immediately following period at the same granularity."""
        if self.day is None:
            if self.month == 12:
                return PeriodKey(self.year + 1, 1)
            return PeriodKey(self.year, self.month + 1)
        following = self.to_timestamp() + pd.Timedelta(days=1)
        return PeriodKey(following.year, following.month, following.day)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class ThresholdResult:
    """
    One methodology's verdict for one period.

    baseline is None when the trailing window held too little history.
    Such periods are never flagged.
    """

    methodology: str
    baseline: float | None
    threshold: float | None
    flagged: bool


@dataclass
class PeriodPoint:
    """
    One aggregated period of a (buyer, drug) series.

    quantity is fixed by the aggregator. The evaluator only ever adds
    entries to results, keyed by methodology name.
    """

    # Identity
    buyer_id: str
    drug_name: str
    period: PeriodKey

    # Aggregates
    quantity: int                    # Sum of dosage units in the period.
    transaction_count: int = 0       # Qualifying transactions in the period.

    # Annotations
    results: dict[str, ThresholdResult] = field(default_factory=dict)

    def with_result(self, result: ThresholdResult) -> "PeriodPoint":
        """Returns a copy carrying every existing annotation plus `result`."""
        results = dict(self.results)
        results[result.methodology] = result
        return PeriodPoint(
            buyer_id=self.buyer_id,
            drug_name=self.drug_name,
            period=self.period,
            quantity=self.quantity,
            transaction_count=self.transaction_count,
            results=results,
        )


def normalize_drug_name(name: str) -> str:
    """Upper-cases and trims a drug name for exact matching."""
    return str(name).strip().upper()
