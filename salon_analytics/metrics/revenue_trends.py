"""
Revenue & booking trends metrics pack.

Single source of truth for: time-bucketed revenue, service ranking,
client spend statistics.
"""
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from salon_analytics.config import (
    LABEL_LOW_PERFORMER,
    LABEL_TOP_SELLER,
    REVENUE_VIEW_MODES,
    config,
)
from salon_analytics.data.filters import FilterState, start_of_week
from salon_analytics.data.schema import client_name_lookup, name_lookup

logger = logging.getLogger(__name__)


REVENUE_SERIES_COLUMNS = ["period_start", "label", "revenue", "appointments"]
SERVICE_COLUMNS = ["id", "name", "revenue", "count", "label"]
CLIENT_SPEND_COLUMNS = ["id", "name", "total_spend", "visits"]


def _empty_df(columns) -> pd.DataFrame:
    return pd.DataFrame(columns=columns)


def _bucket_totals(appointments: pd.DataFrame, keys: pd.Series, sort: bool) -> pd.DataFrame:
    grouped = appointments.groupby(keys, sort=sort).agg(
        revenue=("price", "sum"),
        appointments=("price", "size"),
    )
    grouped.index.name = "period_start"
    return grouped.reset_index()


def compute_revenue_series(appointments: pd.DataFrame,
                           filter_state: FilterState,
                           mode: str = "daily") -> pd.DataFrame:
    """
    Revenue and appointment counts per time bucket.

    daily: one bucket per calendar day in the filter range, zero-filled,
        ascending.
    weekly: keyed by start of week (Sunday), only weeks with appointments,
        in first-seen order.
    monthly: keyed by month, only months with appointments, in first-seen
        order.
    """
    if mode not in REVENUE_VIEW_MODES:
        raise ValueError(f"Unknown revenue view mode: {mode!r}")

    dated = appointments[appointments["date"].notna()] if len(appointments) else appointments

    if mode == "daily":
        days = pd.date_range(
            filter_state.start.normalize(),
            filter_state.end.normalize(),
            freq="D",
        )
        if len(dated) > 0:
            totals = _bucket_totals(dated, dated["date"].dt.normalize(), sort=True)
            totals = totals.set_index("period_start")
        else:
            totals = pd.DataFrame(columns=["revenue", "appointments"])
        result = totals.reindex(days).fillna(0)
        result.index.name = "period_start"
        result = result.reset_index()
        result["label"] = result["period_start"].dt.strftime("%b %d")
    else:
        if len(dated) == 0:
            return _empty_df(REVENUE_SERIES_COLUMNS)
        if mode == "weekly":
            keys = dated["date"].map(start_of_week)
            result = _bucket_totals(dated, keys, sort=False)
            result["label"] = "Week of " + result["period_start"].dt.strftime("%b %d")
        else:
            keys = dated["date"].dt.to_period("M").dt.to_timestamp()
            result = _bucket_totals(dated, keys, sort=False)
            result["label"] = result["period_start"].dt.strftime("%b %Y")

    result["revenue"] = result["revenue"].astype(float)
    result["appointments"] = result["appointments"].astype(int)
    return result[REVENUE_SERIES_COLUMNS]


def compute_service_performance(appointments: pd.DataFrame,
                                services: pd.DataFrame) -> pd.DataFrame:
    """
    Revenue and booking count per service, best seller first.

    Appointments without a service id are skipped. The first row is labelled
    Top Seller and, when there is more than one service, the last row Low
    Performer.
    """
    if len(appointments) == 0:
        return _empty_df(SERVICE_COLUMNS)

    scoped = appointments[appointments["service_id"].notna()]
    if len(scoped) == 0:
        return _empty_df(SERVICE_COLUMNS)

    result = scoped.groupby("service_id", sort=False).agg(
        revenue=("price", "sum"),
        count=("price", "size"),
    ).reset_index().rename(columns={"service_id": "id"})

    result["name"] = result["id"].map(name_lookup(services)).fillna("Unknown Service")
    result = result.sort_values("revenue", ascending=False, kind="stable").reset_index(drop=True)

    result["label"] = ""
    result.loc[0, "label"] = LABEL_TOP_SELLER
    if len(result) > 1:
        result.loc[len(result) - 1, "label"] = LABEL_LOW_PERFORMER

    return result[SERVICE_COLUMNS]


def compute_client_spend(appointments: pd.DataFrame,
                         clients: pd.DataFrame) -> pd.DataFrame:
    """Total spend and visit count per client, in first-seen order."""
    if len(appointments) == 0:
        return _empty_df(CLIENT_SPEND_COLUMNS)

    scoped = appointments[appointments["client_id"].notna()]
    if len(scoped) == 0:
        return _empty_df(CLIENT_SPEND_COLUMNS)

    result = scoped.groupby("client_id", sort=False).agg(
        total_spend=("price", "sum"),
        visits=("price", "size"),
    ).reset_index().rename(columns={"client_id": "id"})

    names = client_name_lookup(appointments, clients)
    result["name"] = result["id"].map(names).fillna("Unknown Client")
    return result[CLIENT_SPEND_COLUMNS]


def get_client_spend_summary(appointments: pd.DataFrame,
                             clients: pd.DataFrame,
                             top_n: Optional[int] = None) -> Dict:
    """
    Client spend analytics.

    average_spend is the visit-weighted average (total spend / total visits).
    conversion_rate is returning clients (more than one visit) over clients
    with at least one first-visit appointment.
    """
    if top_n is None:
        top_n = config.top_clients_n

    spend = compute_client_spend(appointments, clients)
    if len(spend) == 0:
        return {
            "average_spend": 0.0,
            "highest_paying": _empty_df(CLIENT_SPEND_COLUMNS),
            "conversion_rate": 0.0,
            "first_time_clients": 0,
            "returning_clients": 0,
            "total_clients": 0,
        }

    total_spend = spend["total_spend"].sum()
    total_visits = spend["visits"].sum()
    average_spend = float(total_spend / total_visits) if total_visits > 0 else 0.0

    highest_paying = spend.sort_values(
        "total_spend", ascending=False, kind="stable"
    ).head(top_n).reset_index(drop=True)

    first_visit_ids = appointments.loc[
        appointments["is_first_visit"] & appointments["client_id"].notna(), "client_id"
    ].unique()
    first_time_clients = len(first_visit_ids)
    returning_clients = int((spend["visits"] > 1).sum())
    conversion_rate = (
        returning_clients / first_time_clients * 100 if first_time_clients > 0 else 0.0
    )

    return {
        "average_spend": average_spend,
        "highest_paying": highest_paying,
        "conversion_rate": float(conversion_rate),
        "first_time_clients": int(first_time_clients),
        "returning_clients": returning_clients,
        "total_clients": int(len(spend)),
    }


def build_revenue_trends_pack(appointments: pd.DataFrame,
                              services: pd.DataFrame,
                              clients: pd.DataFrame,
                              filter_state: FilterState,
                              mode: str = "daily") -> Dict:
    """All revenue trend outputs for one filter."""
    return {
        "series": compute_revenue_series(appointments, filter_state, mode),
        "services": compute_service_performance(appointments, services),
        "client_spend": get_client_spend_summary(appointments, clients),
        "mode": mode,
    }
