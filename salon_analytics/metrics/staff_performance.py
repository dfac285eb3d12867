"""
Staff performance metrics pack.

Single source of truth for: revenue per staff member, utilisation against
rostered hours, issue rates (no-show / late / cancelled), per-staff client
retention.

Every staff member gets a row, even with no appointments in range.
"""
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from salon_analytics.config import ISSUE_STATUSES, config
from salon_analytics.data.schema import unique_roster

logger = logging.getLogger(__name__)


STAFF_REVENUE_COLUMNS = ["id", "name", "revenue", "appointments", "unique_services", "average_revenue"]
STAFF_UTILISATION_COLUMNS = ["id", "name", "booked_hours", "available_hours", "utilisation_rate"]
STAFF_ISSUE_COLUMNS = ["id", "name", "no_shows", "late_starts", "cancellations", "total_appointments", "issue_rate"]
STAFF_RETENTION_COLUMNS = ["id", "name", "total_clients", "returning_clients", "retention_rate"]

SORTABLE_FIELDS = ["name", "revenue", "appointments", "unique_services", "average_revenue"]


def _roster(staff: pd.DataFrame) -> pd.DataFrame:
    roster = unique_roster(staff)
    if len(roster) == 0:
        return pd.DataFrame(columns=["id", "name", "hours_per_week", "google_calendar_hours"])
    return roster


def _staff_appointments(appointments: pd.DataFrame, roster: pd.DataFrame) -> pd.DataFrame:
    if len(appointments) == 0 or len(roster) == 0:
        return appointments.iloc[0:0]
    return appointments[appointments["staff_id"].isin(roster["id"])]


def _attach(roster: pd.DataFrame, stats: pd.DataFrame, fill_cols) -> pd.DataFrame:
    """Attach per-staff stats (indexed by staff_id) to the roster, zero-filling staff without rows."""
    result = roster[["id", "name"]].reset_index(drop=True)
    for col in fill_cols:
        values = stats[col] if col in stats.columns else pd.Series(dtype=float)
        result[col] = result["id"].map(values).fillna(0)
    return result


def compute_booked_hours(appointments: pd.DataFrame) -> pd.Series:
    """Sum of appointment durations in hours, indexed by staff_id."""
    if len(appointments) == 0:
        return pd.Series(dtype=float, name="booked_hours")
    hours = appointments["duration"] / 60
    return hours.groupby(appointments["staff_id"]).sum().rename("booked_hours")


def compute_staff_revenue(appointments: pd.DataFrame,
                          staff: pd.DataFrame,
                          sort_field: str = "revenue",
                          ascending: bool = False) -> pd.DataFrame:
    """
    Revenue, booking count and service breadth per staff member.

    Args:
        sort_field: One of SORTABLE_FIELDS
        ascending: Sort direction (default highest first)
    """
    if sort_field not in SORTABLE_FIELDS:
        raise ValueError(f"Unknown staff sort field: {sort_field!r}")

    roster = _roster(staff)
    scoped = _staff_appointments(appointments, roster)

    stats = scoped.groupby("staff_id").agg(
        revenue=("price", "sum"),
        appointments=("price", "size"),
        unique_services=("service_id", "nunique"),
    )
    result = _attach(roster, stats, ["revenue", "appointments", "unique_services"])

    result["revenue"] = result["revenue"].astype(float)
    result["appointments"] = result["appointments"].astype(int)
    result["unique_services"] = result["unique_services"].astype(int)
    result["average_revenue"] = np.where(
        result["appointments"] > 0,
        result["revenue"] / result["appointments"],
        0.0,
    )

    result = result.sort_values(sort_field, ascending=ascending, kind="stable")
    return result[STAFF_REVENUE_COLUMNS].reset_index(drop=True)


def compute_staff_utilisation(appointments: pd.DataFrame,
                              staff: pd.DataFrame,
                              weeks_in_range: Optional[float] = None) -> pd.DataFrame:
    """
    Booked hours against rostered hours per staff member.

    available_hours = hours_per_week * weeks_in_range. weeks_in_range defaults
    to the configured constant, not the span of the filter.
    """
    if weeks_in_range is None:
        weeks_in_range = config.staff_weeks_in_range

    roster = _roster(staff)
    scoped = _staff_appointments(appointments, roster)

    result = _attach(roster, compute_booked_hours(scoped).to_frame(), ["booked_hours"])
    if len(result) == 0:
        return pd.DataFrame(columns=STAFF_UTILISATION_COLUMNS)

    hours_per_week = roster["hours_per_week"].fillna(config.default_hours_per_week).values
    result["booked_hours"] = result["booked_hours"].astype(float)
    result["available_hours"] = hours_per_week * float(weeks_in_range)
    result["utilisation_rate"] = np.where(
        result["available_hours"] > 0,
        np.minimum(result["booked_hours"] / result["available_hours"] * 100, 100),
        0.0,
    )
    return result[STAFF_UTILISATION_COLUMNS]


def compute_staff_issue_rates(appointments: pd.DataFrame,
                              staff: pd.DataFrame) -> pd.DataFrame:
    """No-shows, late starts and cancellations as a share of each member's bookings."""
    roster = _roster(staff)
    scoped = _staff_appointments(appointments, roster).copy()

    issue_cols = list(ISSUE_STATUSES.values())
    for status, col in ISSUE_STATUSES.items():
        scoped[col] = (scoped["status"] == status).astype(int)

    agg_spec = {col: (col, "sum") for col in issue_cols}
    agg_spec["total_appointments"] = ("status", "size")
    stats = scoped.groupby("staff_id").agg(**agg_spec)

    result = _attach(roster, stats, issue_cols + ["total_appointments"])
    for col in issue_cols + ["total_appointments"]:
        result[col] = result[col].astype(int)

    issues = result[issue_cols].sum(axis=1)
    result["issue_rate"] = np.where(
        result["total_appointments"] > 0,
        issues / result["total_appointments"] * 100,
        0.0,
    )
    return result[STAFF_ISSUE_COLUMNS]


def compute_staff_retention(appointments: pd.DataFrame,
                            staff: pd.DataFrame) -> pd.DataFrame:
    """
    Share of each member's clients seen more than once by that same member.
    """
    roster = _roster(staff)
    scoped = _staff_appointments(appointments, roster)
    scoped = scoped[scoped["client_id"].notna()]

    visits = scoped.groupby(["staff_id", "client_id"]).size().rename("visits").reset_index()
    visits["is_returning"] = (visits["visits"] > 1).astype(int)
    stats = visits.groupby("staff_id").agg(
        total_clients=("client_id", "size"),
        returning_clients=("is_returning", "sum"),
    )

    result = _attach(roster, stats, ["total_clients", "returning_clients"])
    result["total_clients"] = result["total_clients"].astype(int)
    result["returning_clients"] = result["returning_clients"].astype(int)
    result["retention_rate"] = np.where(
        result["total_clients"] > 0,
        result["returning_clients"] / result["total_clients"] * 100,
        0.0,
    )
    return result[STAFF_RETENTION_COLUMNS]


def build_staff_performance_pack(appointments: pd.DataFrame,
                                 staff: pd.DataFrame,
                                 sort_field: str = "revenue",
                                 ascending: bool = False,
                                 weeks_in_range: Optional[float] = None) -> Dict[str, pd.DataFrame]:
    """All staff performance outputs for one filter."""
    return {
        "revenue": compute_staff_revenue(appointments, staff, sort_field, ascending),
        "utilisation": compute_staff_utilisation(appointments, staff, weeks_in_range),
        "issues": compute_staff_issue_rates(appointments, staff),
        "retention": compute_staff_retention(appointments, staff),
    }
