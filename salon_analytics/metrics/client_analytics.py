"""
Client analytics: retention funnel, lapsed-client ranking, booking heatmap.
"""
import logging
from typing import Any, Dict, Optional

import pandas as pd

from salon_analytics.config import WEEKDAY_NAMES, config
from salon_analytics.data.filters import resolve_now
from salon_analytics.data.schema import client_name_lookup

logger = logging.getLogger(__name__)


FUNNEL_STAGES = [
    ("first_visit", "1st Visit"),
    ("second_visit", "2nd Visit"),
    ("third_visit", "3rd Visit"),
    ("more_than_three", "4+ Visits"),
]
FUNNEL_COLUMNS = ["stage", "label", "clients", "pct", "reached", "reached_pct"]
LAST_VISIT_COLUMNS = ["client_id", "name", "last_visit_date", "days_since"]
HEATMAP_COLUMNS = ["day", "day_index", "hour", "hour_value", "count"]


def _ratio_pct(numerator: float, denominator: float) -> float:
    return float(numerator / denominator * 100) if denominator > 0 else 0.0


def _hour_label(hour: int) -> str:
    if hour < 12:
        return f"{hour} AM"
    if hour == 12:
        return "12 PM"
    return f"{hour - 12} PM"


def weekday_index(dates: pd.Series) -> pd.Series:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (dates.dt.dayofweek + 1) % 7


def compute_client_visits(appointments: pd.DataFrame) -> pd.Series:
    """Visit count per client_id."""
    if len(appointments) == 0:
        return pd.Series(dtype=int, name="visits")
    scoped = appointments[appointments["client_id"].notna()]
    return scoped.groupby("client_id").size().rename("visits")


def compute_retention_funnel(appointments: pd.DataFrame) -> pd.DataFrame:
    """
    Retention funnel over visit-count cohorts.

    clients: exclusive cohort sizes (exactly 1, 2, 3 visits, more than 3).
    pct: stage-relative share, each cohort over the previous cohort
        (first cohort over all clients).
    reached: clients with at least that many visits (last stage: more than 3).
    reached_pct: reached over the previous stage's reached count
        (first stage over all clients).

    Any zero denominator gives 0.
    """
    visits = compute_client_visits(appointments)
    total = int(len(visits))

    clients = [
        int((visits == 1).sum()),
        int((visits == 2).sum()),
        int((visits == 3).sum()),
        int((visits > 3).sum()),
    ]
    reached = [
        int((visits >= 1).sum()),
        int((visits >= 2).sum()),
        int((visits >= 3).sum()),
        int((visits > 3).sum()),
    ]

    rows = []
    for i, (stage, label) in enumerate(FUNNEL_STAGES):
        prev_clients = total if i == 0 else clients[i - 1]
        prev_reached = total if i == 0 else reached[i - 1]
        rows.append({
            "stage": stage,
            "label": label,
            "clients": clients[i],
            "pct": _ratio_pct(clients[i], prev_clients),
            "reached": reached[i],
            "reached_pct": _ratio_pct(reached[i], prev_reached),
        })

    return pd.DataFrame(rows, columns=FUNNEL_COLUMNS)


def get_retention_summary(appointments: pd.DataFrame) -> Dict[str, Any]:
    """Stage-relative funnel percentages keyed by stage, plus the client total."""
    funnel = compute_retention_funnel(appointments)
    summary: Dict[str, Any] = dict(zip(funnel["stage"], funnel["pct"]))
    summary["total_clients"] = int(len(compute_client_visits(appointments)))
    return summary


def compute_time_since_last_visit(appointments: pd.DataFrame,
                                  clients: pd.DataFrame,
                                  now: Optional[Any] = None,
                                  top_n: Optional[int] = None) -> pd.DataFrame:
    """
    Clients ranked by whole days since their latest visit on or before now.

    Returns the top_n (default 10) longest-absent clients, longest first.
    """
    if top_n is None:
        top_n = config.lapsed_clients_n
    now = resolve_now(now)

    if len(appointments) == 0:
        return pd.DataFrame(columns=LAST_VISIT_COLUMNS)

    past = appointments[appointments["client_id"].notna() & (appointments["date"] <= now)]
    if len(past) == 0:
        return pd.DataFrame(columns=LAST_VISIT_COLUMNS)

    result = past.groupby("client_id")["date"].max().rename("last_visit_date").reset_index()
    result["days_since"] = (now - result["last_visit_date"]).dt.days.astype(int)
    result["name"] = result["client_id"].map(client_name_lookup(appointments, clients)).fillna("Unknown Client")

    # ties: most recent visit first
    result = result.sort_values(
        ["days_since", "last_visit_date"], ascending=[False, False], kind="stable"
    )
    return result[LAST_VISIT_COLUMNS].head(top_n).reset_index(drop=True)


def compute_booking_heatmap(appointments: pd.DataFrame) -> pd.DataFrame:
    """
    Dense weekday x hour grid of appointment counts.

    7 weekdays (Sunday first) by 12 hourly slots from 08:00. An appointment
    falls in the slot of its truncated start hour; starts outside the window
    are not counted.
    """
    hours = list(range(config.heatmap_start_hour, config.heatmap_start_hour + config.heatmap_hours))
    grid = pd.MultiIndex.from_product([range(7), hours], names=["day_index", "hour_value"])

    counts: Dict = {}
    if len(appointments) > 0:
        dated = appointments[appointments["date"].notna()]
        counts = dated.groupby(
            [weekday_index(dated["date"]).rename("day_index"), dated["date"].dt.hour.rename("hour_value")]
        ).size().to_dict()

    result = grid.to_frame(index=False)
    result["count"] = [
        int(counts.get((day, hour), 0))
        for day, hour in zip(result["day_index"], result["hour_value"])
    ]
    result["day"] = result["day_index"].map(lambda i: WEEKDAY_NAMES[i])
    result["hour"] = result["hour_value"].map(_hour_label)
    return result[HEATMAP_COLUMNS]


def heatmap_matrix(heatmap: pd.DataFrame) -> pd.DataFrame:
    """Pivot the long-form heatmap to weekdays x hours."""
    matrix = heatmap.pivot(index="day_index", columns="hour_value", values="count")
    matrix.index = [WEEKDAY_NAMES[i] for i in matrix.index]
    return matrix


def build_client_analytics_pack(appointments: pd.DataFrame,
                                clients: pd.DataFrame,
                                now: Optional[Any] = None) -> Dict:
    """All client analytics outputs for one filter."""
    return {
        "funnel": compute_retention_funnel(appointments),
        "retention": get_retention_summary(appointments),
        "last_visit": compute_time_since_last_visit(appointments, clients, now),
        "heatmap": compute_booking_heatmap(appointments),
    }
