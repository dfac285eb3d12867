"""
Calendar utilisation: booked vs available hours, booking status, peak days.

Available hours come from the staff member's calendar hours (falling back
to rostered weekly hours) and are not scaled to the filter span.
"""
import logging
from typing import Any, Dict

import numpy as np
import pandas as pd

from salon_analytics.config import (
    BUSIEST_DAY_ADVICE,
    OFF_PEAK_ACTIONS,
    SLOWEST_DAY_ADVICE,
    STATUS_OVERBOOKED,
    STATUS_UNDERBOOKED,
    STATUS_WELL_BOOKED,
    WEEKDAY_NAMES,
    config,
)
from salon_analytics.data.schema import unique_roster
from salon_analytics.metrics.client_analytics import weekday_index
from salon_analytics.metrics.staff_performance import compute_booked_hours

logger = logging.getLogger(__name__)


CALENDAR_COLUMNS = ["id", "name", "booked_hours", "available_hours", "utilisation_rate", "free_hours"]
BOOKING_STATUS_COLUMNS = ["status", "count", "staff_list"]
PEAK_DAY_COLUMNS = ["day", "day_index", "count"]


def compute_calendar_utilisation(appointments: pd.DataFrame,
                                 staff: pd.DataFrame) -> pd.DataFrame:
    """Booked, available and free hours per staff member."""
    roster = unique_roster(staff)
    if len(roster) == 0:
        return pd.DataFrame(columns=CALENDAR_COLUMNS)

    if len(appointments) > 0:
        booked = compute_booked_hours(appointments[appointments["staff_id"].isin(roster["id"])])
    else:
        booked = pd.Series(dtype=float)

    result = roster[["id", "name"]].copy()
    result["booked_hours"] = result["id"].map(booked).fillna(0).astype(float)
    result["available_hours"] = (
        roster["google_calendar_hours"]
        .fillna(roster["hours_per_week"])
        .fillna(config.default_hours_per_week)
        .astype(float)
    )
    result["utilisation_rate"] = np.where(
        result["available_hours"] > 0,
        np.minimum(result["booked_hours"] / result["available_hours"] * 100, 100),
        0.0,
    )
    result["free_hours"] = (result["available_hours"] - result["booked_hours"]).clip(lower=0)
    return result[CALENDAR_COLUMNS]


def compute_booking_status(utilisation: pd.DataFrame) -> pd.DataFrame:
    """
    Classify staff as Overbooked (>= 90%), Well Booked (70-90%) or
    Underbooked (< 70%).
    """
    rate = utilisation["utilisation_rate"] if len(utilisation) else pd.Series(dtype=float)
    buckets = [
        (STATUS_OVERBOOKED, rate >= config.overbooked_threshold),
        (STATUS_WELL_BOOKED, (rate >= config.well_booked_threshold) & (rate < config.overbooked_threshold)),
        (STATUS_UNDERBOOKED, rate < config.well_booked_threshold),
    ]

    rows = []
    for status, mask in buckets:
        names = utilisation.loc[mask, "name"].tolist() if len(utilisation) else []
        rows.append({
            "status": status,
            "count": len(names),
            "staff_list": ", ".join(names),
        })
    return pd.DataFrame(rows, columns=BOOKING_STATUS_COLUMNS)


def compute_peak_days(appointments: pd.DataFrame) -> pd.DataFrame:
    """Appointments per weekday, busiest first; ties keep Sunday-first order."""
    if len(appointments) > 0:
        dated = appointments[appointments["date"].notna()]
        counts = weekday_index(dated["date"]).value_counts()
    else:
        counts = pd.Series(dtype=int)

    result = pd.DataFrame({"day_index": range(7), "day": WEEKDAY_NAMES})
    result["count"] = result["day_index"].map(counts).fillna(0).astype(int)
    result = result.sort_values("count", ascending=False, kind="stable")
    return result[PEAK_DAY_COLUMNS].reset_index(drop=True)


def get_peak_recommendations(peak_days: pd.DataFrame) -> Dict[str, Any]:
    """
    Busiest / slowest day callouts.

    busiest needs at least one appointment; the two slowest days (last two
    rows) need appointments on at least two distinct weekdays.
    """
    result: Dict[str, Any] = {
        "busiest_day": None,
        "busiest_count": 0,
        "busiest_advice": None,
        "slowest_days": [],
        "slowest_advice": None,
        "actions": [],
    }
    if len(peak_days) == 0 or peak_days["count"].sum() == 0:
        return result

    top = peak_days.iloc[0]
    result["busiest_day"] = top["day"]
    result["busiest_count"] = int(top["count"])
    result["busiest_advice"] = BUSIEST_DAY_ADVICE

    if len(peak_days) >= 2 and (peak_days["count"] > 0).sum() >= 2:
        slowest = peak_days.iloc[::-1].head(2)
        result["slowest_days"] = [
            {"day": row["day"], "count": int(row["count"])} for _, row in slowest.iterrows()
        ]
        result["slowest_advice"] = SLOWEST_DAY_ADVICE
        result["actions"] = [
            f"Run promotions on {slowest.iloc[0]['day']} and {slowest.iloc[1]['day']}",
        ] + OFF_PEAK_ACTIONS

    return result


def build_calendar_pack(appointments: pd.DataFrame, staff: pd.DataFrame) -> Dict:
    """All calendar utilisation outputs for one filter."""
    utilisation = compute_calendar_utilisation(appointments, staff)
    peak_days = compute_peak_days(appointments)
    return {
        "utilisation": utilisation,
        "booking_status": compute_booking_status(utilisation),
        "peak_days": peak_days,
        "recommendations": get_peak_recommendations(peak_days),
    }
