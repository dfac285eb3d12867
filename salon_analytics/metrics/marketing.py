"""
Marketing insights: promotion conversion, upsell rate, package usage.
"""
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from salon_analytics.config import LABEL_TOP_PERFORMER, config
from salon_analytics.data.schema import unique_roster

logger = logging.getLogger(__name__)


PROMOTION_COLUMNS = ["id", "name", "code", "views", "conversions", "conversion_rate", "revenue", "label"]
PACKAGE_SLICE_COLUMNS = ["name", "value"]


def compute_promotion_performance(appointments: pd.DataFrame,
                                  promotions: pd.DataFrame) -> pd.DataFrame:
    """
    Conversions and revenue per promotion, best converting first.

    conversion_rate = conversions / views * 100, where views falls back to
    the configured default when a promotion has no view count.
    """
    roster = unique_roster(promotions)
    if len(roster) == 0:
        return pd.DataFrame(columns=PROMOTION_COLUMNS)

    if len(appointments) > 0:
        stats = appointments[appointments["promo_id"].notna()].groupby("promo_id").agg(
            conversions=("price", "size"),
            revenue=("price", "sum"),
        )
    else:
        stats = pd.DataFrame(columns=["conversions", "revenue"])

    result = roster[["id", "name", "code"]].copy()
    result["views"] = roster["view_count"].fillna(config.default_view_count).astype(float)
    result["conversions"] = result["id"].map(stats["conversions"]).fillna(0).astype(int)
    result["revenue"] = result["id"].map(stats["revenue"]).fillna(0).astype(float)
    result["conversion_rate"] = np.where(
        result["views"] > 0,
        result["conversions"] / result["views"] * 100,
        0.0,
    )

    result = result.sort_values("conversion_rate", ascending=False, kind="stable").reset_index(drop=True)
    result["label"] = ""
    result.loc[0, "label"] = LABEL_TOP_PERFORMER
    return result[PROMOTION_COLUMNS]


def compute_upsell_rate(appointments: pd.DataFrame) -> float:
    """Percentage of appointments with at least one add-on."""
    if len(appointments) == 0:
        return 0.0
    with_addons = appointments["addons"].map(len) > 0
    return float(with_addons.sum() / len(appointments) * 100)


def compute_package_usage(appointments: pd.DataFrame,
                          packages_sold: Optional[float] = None) -> Dict:
    """
    Package vs regular appointment split.

    packages_sold is a placeholder until a real packages-sold source exists;
    redemption_rate is measured against it.
    """
    if packages_sold is None:
        packages_sold = config.packages_sold_placeholder

    if len(appointments) > 0:
        package_count = int(appointments["is_package"].sum())
    else:
        package_count = 0
    regular_count = int(len(appointments) - package_count)

    slices = pd.DataFrame(
        [
            {"name": "Package Appointments", "value": package_count},
            {"name": "Regular Appointments", "value": regular_count},
        ],
        columns=PACKAGE_SLICE_COLUMNS,
    )

    return {
        "slices": slices,
        "package_appointments": package_count,
        "regular_appointments": regular_count,
        "packages_sold": float(packages_sold),
        "redemption_rate": float(package_count / packages_sold * 100) if packages_sold > 0 else 0.0,
    }


def build_marketing_pack(appointments: pd.DataFrame,
                         promotions: pd.DataFrame) -> Dict:
    """All marketing outputs for one filter."""
    return {
        "promotions": compute_promotion_performance(appointments, promotions),
        "upsell_rate": compute_upsell_rate(appointments),
        "packages": compute_package_usage(appointments),
    }
