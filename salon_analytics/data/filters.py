"""
Filter engine: date-range and location predicate, plus dashboard date presets.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import pandas as pd

from salon_analytics.config import ALL_LOCATIONS, config
from salon_analytics.data.schema import coerce_instant

logger = logging.getLogger(__name__)


def resolve_now(now: Optional[Any] = None) -> pd.Timestamp:
    """Reference instant for 'today'-relative metrics (defaults to wall-clock now in config.timezone)."""
    if now is None:
        return pd.Timestamp.now(tz=config.timezone).tz_localize(None)
    ts = coerce_instant(now)
    if pd.isna(ts):
        raise ValueError(f"Invalid reference instant: {now!r}")
    return ts


@dataclass(frozen=True)
class FilterState:
    """Inclusive date range plus location ('all' or a business id)."""

    start: pd.Timestamp
    end: pd.Timestamp
    location_id: str = ALL_LOCATIONS

    def __post_init__(self):
        start = coerce_instant(self.start)
        end = coerce_instant(self.end)
        if pd.isna(start) or pd.isna(end):
            raise ValueError(f"FilterState needs valid start and end, got {self.start!r}, {self.end!r}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)
        object.__setattr__(self, "location_id", str(self.location_id or ALL_LOCATIONS))

    @classmethod
    def default(cls, now: Optional[Any] = None) -> "FilterState":
        """Last 30 days across all locations."""
        start, end = get_preset_range("last_month", now)
        return cls(start=start, end=end)

    @classmethod
    def from_preset(cls, preset: str, location_id: str = ALL_LOCATIONS,
                    now: Optional[Any] = None) -> "FilterState":
        start, end = get_preset_range(preset, now)
        return cls(start=start, end=end, location_id=location_id)

    @property
    def all_locations(self) -> bool:
        return self.location_id == ALL_LOCATIONS

    @property
    def cache_key(self) -> Tuple[str, str, str]:
        return (self.start.isoformat(), self.end.isoformat(), self.location_id)


# =============================================================================
# PRESETS
# =============================================================================

def start_of_week(ts: pd.Timestamp) -> pd.Timestamp:
    """Midnight of the Sunday on or before ts."""
    ts = pd.Timestamp(ts).normalize()
    return ts - pd.Timedelta(days=(ts.dayofweek + 1) % 7)


def get_preset_range(preset: str, now: Optional[Any] = None) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """
    Get start and end instants for a dashboard preset.

    Args:
        preset: One of 'last_week', 'last_month', 'current_week', 'current_month'
        now: Reference instant (defaults to now)

    Returns:
        (start, end) tuple
    """
    now = resolve_now(now)
    last_instant = pd.Timedelta(microseconds=1)

    if preset == "last_week":
        return now - pd.Timedelta(days=7), now
    if preset == "current_week":
        start = start_of_week(now)
        return start, start + pd.Timedelta(days=7) - last_instant
    if preset == "current_month":
        start = now.normalize().replace(day=1)
        return start, start + pd.offsets.MonthBegin(1) - last_instant
    if preset != "last_month":
        logger.warning("Unknown date preset %r, using last_month", preset)
    return now - pd.Timedelta(days=30), now


def weeks_in_range(filter_state: FilterState) -> float:
    """Number of weeks covered by the filter, counting calendar days inclusively."""
    days = (filter_state.end.normalize() - filter_state.start.normalize()).days + 1
    return max(days, 0) / 7


# =============================================================================
# FILTERING
# =============================================================================

def location_mask(df: pd.DataFrame, location_id: str,
                  location_col: str = "business_id") -> pd.Series:
    """True where the row belongs to the location (always True for 'all')."""
    if location_id == ALL_LOCATIONS or location_col not in df.columns:
        return pd.Series(True, index=df.index)
    return df[location_col] == location_id


def filter_records(df: pd.DataFrame, filter_state: FilterState,
                   date_col: str = "date",
                   location_col: str = "business_id") -> pd.DataFrame:
    """
    Keep rows with start <= date <= end and a matching location.

    Input order is preserved. Rows with an unparseable date never match.
    """
    if len(df) == 0:
        return df.copy()

    if date_col in df.columns:
        mask = df[date_col].between(filter_state.start, filter_state.end, inclusive="both")
    else:
        mask = pd.Series(True, index=df.index)

    mask &= location_mask(df, filter_state.location_id, location_col)
    return df[mask].copy()


def filter_lookup(df: pd.DataFrame, filter_state: FilterState,
                  location_col: str = "business_id") -> pd.DataFrame:
    """
    Location filter for undated lookup collections (staff, clients, ...).

    Rows without a business id are shared across locations and kept.
    """
    if len(df) == 0 or filter_state.all_locations or location_col not in df.columns:
        return df.copy()
    mask = df[location_col].isna() | (df[location_col] == filter_state.location_id)
    return df[mask].copy()
