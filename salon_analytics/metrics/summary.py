"""
Dashboard headline stats.
"""
from typing import Dict

import pandas as pd

from salon_analytics.config import ACTIVE_STAFF_STATUS


def compute_dashboard_summary(appointments: pd.DataFrame,
                              staff: pd.DataFrame,
                              clients: pd.DataFrame) -> Dict[str, float]:
    """Appointment count, revenue, active staff and client count for the header cards."""
    return {
        "total_appointments": int(len(appointments)),
        "total_revenue": float(appointments["price"].sum()) if len(appointments) else 0.0,
        "active_staff": int((staff["status"] == ACTIVE_STAFF_STATUS).sum()) if len(staff) else 0,
        "total_clients": int(len(clients)),
    }
