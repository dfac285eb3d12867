"""
Dashboard pipeline: normalise once, filter once, fan out to every metrics pack.

Recomputed in full on every filter change. Results are memoised on
(filter, record set version, view options) and a newer filter supersedes
any computation still in flight.
"""
import hashlib
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import pandas as pd
import streamlit as st

from salon_analytics.config import config
from salon_analytics.data.filters import (
    FilterState,
    filter_lookup,
    filter_records,
    resolve_now,
    weeks_in_range,
)
from salon_analytics.data.schema import COLLECTIONS, normalise_collections, validate_schema
from salon_analytics.metrics.calendar_utilisation import build_calendar_pack
from salon_analytics.metrics.client_analytics import build_client_analytics_pack
from salon_analytics.metrics.marketing import build_marketing_pack
from salon_analytics.metrics.product_sales import build_product_sales_pack
from salon_analytics.metrics.revenue_trends import build_revenue_trends_pack
from salon_analytics.metrics.staff_performance import build_staff_performance_pack
from salon_analytics.metrics.summary import compute_dashboard_summary

logger = logging.getLogger(__name__)


class PipelineCancelled(Exception):
    """Raised when a newer filter supersedes an in-flight computation."""
    pass


@dataclass(frozen=True)
class ViewOptions:
    """Presentation choices that change metric output."""

    revenue_mode: str = "daily"
    staff_sort_field: str = "revenue"
    staff_sort_ascending: bool = False
    # Scale staff available hours by the filter span instead of the fixed
    # configured number of weeks.
    derive_weeks_from_range: bool = False


def _fingerprint(frames: Dict[str, pd.DataFrame]) -> str:
    digest = hashlib.sha1()
    for name in sorted(frames):
        digest.update(name.encode("utf-8"))
        digest.update(frames[name].to_json(date_format="iso", default_handler=str).encode("utf-8"))
    return digest.hexdigest()


@dataclass
class DashboardRecords:
    """Normalised record collections plus a version used for memoisation."""

    frames: Dict[str, pd.DataFrame]
    version: str = ""

    def __post_init__(self):
        if not self.version:
            self.version = _fingerprint(self.frames)

    @classmethod
    def from_raw(cls, collections: Optional[Dict[str, Any]],
                 version: Optional[str] = None) -> "DashboardRecords":
        """
        Build from raw collections (lists of dicts or DataFrames).

        Missing collections are treated as empty. Missing required fields are
        logged, not raised.
        """
        collections = collections or {}
        for entity in COLLECTIONS:
            result = validate_schema(collections.get(entity), entity, strict=False)
            if not result["is_valid"]:
                logger.warning(
                    "%s records missing required fields %s; defaults applied",
                    entity, result["missing_required"],
                )
        return cls(frames=normalise_collections(collections), version=version or "")


def filter_collections(frames: Dict[str, pd.DataFrame],
                       filter_state: FilterState) -> Dict[str, pd.DataFrame]:
    """Apply the filter once to every collection."""
    filtered = {}
    for name, df in frames.items():
        if name in ("appointments", "sales"):
            filtered[name] = filter_records(df, filter_state)
        else:
            filtered[name] = filter_lookup(df, filter_state)
    return filtered


def _empty_frames(frames: Dict[str, pd.DataFrame]) -> Dict[str, pd.DataFrame]:
    return {name: df.iloc[0:0] for name, df in frames.items()}


def _metric_steps(filter_state: FilterState,
                  options: ViewOptions,
                  now: pd.Timestamp) -> Dict[str, Callable[[Dict[str, pd.DataFrame]], Any]]:
    weeks = weeks_in_range(filter_state) if options.derive_weeks_from_range else None
    return {
        "summary": lambda f: compute_dashboard_summary(f["appointments"], f["staff"], f["clients"]),
        "revenue_trends": lambda f: build_revenue_trends_pack(
            f["appointments"], f["services"], f["clients"], filter_state, options.revenue_mode
        ),
        "staff_performance": lambda f: build_staff_performance_pack(
            f["appointments"], f["staff"],
            options.staff_sort_field, options.staff_sort_ascending, weeks,
        ),
        "client_analytics": lambda f: build_client_analytics_pack(f["appointments"], f["clients"], now),
        "marketing": lambda f: build_marketing_pack(f["appointments"], f["promotions"]),
        "product_sales": lambda f: build_product_sales_pack(f["products"], f["sales"], f["staff"]),
        "calendar": lambda f: build_calendar_pack(f["appointments"], f["staff"]),
    }


def compute_dashboard(records: DashboardRecords,
                      filter_state: FilterState,
                      options: Optional[ViewOptions] = None,
                      now: Optional[Any] = None,
                      should_cancel: Optional[Callable[[], bool]] = None) -> Dict[str, Any]:
    """
    Orchestrate all metrics packs for one filter.

    Invalid view options raise ValueError. Any other failure inside a pack is
    logged and that pack is replaced by its empty-input result, so the bundle
    is always complete.

    should_cancel is polled between packs; a True answer raises
    PipelineCancelled.
    """
    options = options or ViewOptions()
    now = resolve_now(now)

    filtered = filter_collections(records.frames, filter_state)
    bundle: Dict[str, Any] = {
        "filter": {
            "start": filter_state.start,
            "end": filter_state.end,
            "location_id": filter_state.location_id,
        },
        "record_set_version": records.version,
    }

    for name, step in _metric_steps(filter_state, options, now).items():
        if should_cancel is not None and should_cancel():
            raise PipelineCancelled(f"Superseded before {name}")
        try:
            bundle[name] = step(filtered)
        except ValueError:
            raise
        except Exception:
            logger.exception("Metrics pack %s failed; using empty result", name)
            bundle[name] = step(_empty_frames(filtered))

    logger.debug(
        "Computed dashboard for %s (%d appointments in range)",
        filter_state.cache_key, len(filtered["appointments"]),
    )
    return bundle


@st.cache_data(ttl=config.cache_ttl_seconds, show_spinner=False)
def _compute_dashboard_cached(_records: DashboardRecords,
                              record_set_version: str,
                              start: str,
                              end: str,
                              location_id: str,
                              revenue_mode: str,
                              staff_sort_field: str,
                              staff_sort_ascending: bool,
                              derive_weeks_from_range: bool,
                              now: str) -> Dict[str, Any]:
    options = ViewOptions(
        revenue_mode=revenue_mode,
        staff_sort_field=staff_sort_field,
        staff_sort_ascending=staff_sort_ascending,
        derive_weeks_from_range=derive_weeks_from_range,
    )
    filter_state = FilterState(start=start, end=end, location_id=location_id)
    return compute_dashboard(_records, filter_state, options, now)


def get_dashboard(records: DashboardRecords,
                  filter_state: FilterState,
                  options: Optional[ViewOptions] = None,
                  now: Optional[Any] = None) -> Dict[str, Any]:
    """
    Memoised compute_dashboard.

    Keyed on the record set version rather than the records themselves, so
    callers must bump the version when the records change. The reference
    instant is truncated to the minute for the cache key.
    """
    options = options or ViewOptions()
    now = resolve_now(now).floor("min")
    start, end, location_id = filter_state.cache_key
    return _compute_dashboard_cached(
        records,
        records.version,
        start,
        end,
        location_id,
        options.revenue_mode,
        options.staff_sort_field,
        options.staff_sort_ascending,
        options.derive_weeks_from_range,
        now.isoformat(),
    )


@dataclass
class DashboardRecomputer:
    """
    Last-filter-wins recomputation on a background worker.

    Usage:
        with DashboardRecomputer(records) as recomputer:
            recomputer.submit(filter_a)
            recomputer.submit(filter_b)   # filter_a is cancelled or discarded
            bundle = recomputer.latest()
    """

    records: DashboardRecords
    options: ViewOptions = field(default_factory=ViewOptions)
    _executor: Optional[ThreadPoolExecutor] = field(default=None, init=False, repr=False)
    _future: Optional[Future] = field(default=None, init=False, repr=False)
    _generation: int = field(default=0, init=False, repr=False)

    def __enter__(self):
        self._executor = ThreadPoolExecutor(max_workers=1)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None

    def submit(self, filter_state: FilterState, now: Optional[Any] = None) -> Future:
        """Start computing for filter_state, superseding any earlier request."""
        if not self._executor:
            raise RuntimeError("DashboardRecomputer must be used as context manager")

        self._generation += 1
        generation = self._generation
        if self._future is not None and self._future.cancel():
            logger.debug("Cancelled pending dashboard computation")

        self._future = self._executor.submit(self._run, generation, filter_state, now)
        return self._future

    def _run(self, generation: int, filter_state: FilterState, now: Optional[Any]) -> Dict[str, Any]:
        return compute_dashboard(
            self.records,
            filter_state,
            self.options,
            now,
            should_cancel=lambda: generation != self._generation,
        )

    def latest(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Result for the most recently submitted filter (None if nothing submitted)."""
        if self._future is None:
            return None
        return self._future.result(timeout=timeout)
