"""
Retail product sales metrics pack.

Single source of truth for: per-product sales, per-staff retail sales,
service vs retail revenue split, stock turnover.

Sales are the product-embedded sale entries, already exploded and filtered
to the date range (see data.schema.explode_product_sales).
"""
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from salon_analytics.config import config
from salon_analytics.data.schema import unique_roster

logger = logging.getLogger(__name__)


PRODUCT_SALES_COLUMNS = ["id", "name", "category", "price", "total_sales", "total_revenue", "stock"]
STAFF_SALES_COLUMNS = ["id", "name", "total_sales", "total_revenue", "unique_products"]
BREAKDOWN_COLUMNS = ["name", "value", "percentage"]
TURNOVER_COLUMNS = ["id", "name", "current_stock", "sold", "turnover_rate", "status"]


def _priced_sales(sales: pd.DataFrame, products: pd.DataFrame) -> pd.DataFrame:
    """Sales joined to their product's unit price; revenue = quantity x price."""
    if len(sales) == 0 or len(products) == 0:
        return pd.DataFrame(columns=list(sales.columns) + ["price", "revenue"])
    prices = products[products["id"].notna()].drop_duplicates(subset=["id"]).set_index("id")["price"]
    priced = sales[sales["product_id"].isin(prices.index)].copy()
    priced["price"] = priced["product_id"].map(prices).astype(float)
    priced["revenue"] = priced["quantity"] * priced["price"]
    return priced


def compute_product_sales(products: pd.DataFrame, sales: pd.DataFrame) -> pd.DataFrame:
    """Units sold and revenue per product, highest revenue first."""
    roster = unique_roster(products)
    if len(roster) == 0:
        return pd.DataFrame(columns=PRODUCT_SALES_COLUMNS)

    if len(sales) > 0:
        units = sales.groupby("product_id")["quantity"].sum()
    else:
        units = pd.Series(dtype=float)

    result = roster[["id", "name", "category", "price", "stock"]].copy()
    result["total_sales"] = result["id"].map(units).fillna(0).astype(float)
    result["total_revenue"] = result["total_sales"] * result["price"]

    result = result.sort_values("total_revenue", ascending=False, kind="stable")
    return result[PRODUCT_SALES_COLUMNS].reset_index(drop=True)


def compute_staff_product_sales(products: pd.DataFrame,
                                sales: pd.DataFrame,
                                staff: pd.DataFrame) -> pd.DataFrame:
    """
    Retail sales attributed to the selling staff member.

    Sales whose staff id matches no staff member are ignored. Every staff
    member appears, highest revenue first.
    """
    roster = unique_roster(staff)
    if len(roster) == 0:
        return pd.DataFrame(columns=STAFF_SALES_COLUMNS)

    priced = _priced_sales(sales, products)
    priced = priced[priced["staff_id"].isin(roster["id"])]

    stats = priced.groupby("staff_id").agg(
        total_sales=("quantity", "sum"),
        total_revenue=("revenue", "sum"),
        unique_products=("product_id", "nunique"),
    )

    result = roster[["id", "name"]].copy()
    result["total_sales"] = result["id"].map(stats["total_sales"]).fillna(0).astype(float)
    result["total_revenue"] = result["id"].map(stats["total_revenue"]).fillna(0).astype(float)
    result["unique_products"] = result["id"].map(stats["unique_products"]).fillna(0).astype(int)

    result = result.sort_values("total_revenue", ascending=False, kind="stable")
    return result[STAFF_SALES_COLUMNS].reset_index(drop=True)


def compute_revenue_breakdown(product_sales: pd.DataFrame,
                              service_revenue: Optional[float] = None) -> pd.DataFrame:
    """
    Services vs retail revenue split.

    service_revenue is a configured placeholder, not derived from
    appointments. Retail revenue is the sum of per-product revenue.
    """
    if service_revenue is None:
        service_revenue = config.service_revenue_placeholder

    retail_revenue = float(product_sales["total_revenue"].sum()) if len(product_sales) else 0.0
    total = float(service_revenue) + retail_revenue

    rows = [
        {"name": "Services", "value": float(service_revenue)},
        {"name": "Retail Products", "value": retail_revenue},
    ]
    result = pd.DataFrame(rows)
    result["percentage"] = result["value"] / total * 100 if total > 0 else 0.0
    return result[BREAKDOWN_COLUMNS]


def compute_stock_turnover(product_sales: pd.DataFrame) -> pd.DataFrame:
    """
    Turnover per product from reconstructed opening stock.

    initial stock = current stock + units sold; turnover = sold / initial.
    High above 50%, Medium above 20%, otherwise Low.
    """
    if len(product_sales) == 0:
        return pd.DataFrame(columns=TURNOVER_COLUMNS)

    result = product_sales[["id", "name"]].copy()
    result["current_stock"] = product_sales["stock"].clip(lower=0)
    result["sold"] = product_sales["total_sales"].clip(lower=0)

    initial = result["current_stock"] + result["sold"]
    result["turnover_rate"] = np.where(initial > 0, result["sold"] / initial * 100, 0.0)
    result["status"] = np.select(
        [
            result["turnover_rate"] > config.turnover_high_threshold,
            result["turnover_rate"] > config.turnover_medium_threshold,
        ],
        ["High", "Medium"],
        default="Low",
    )
    return result[TURNOVER_COLUMNS].reset_index(drop=True)


def build_product_sales_pack(products: pd.DataFrame,
                             sales: pd.DataFrame,
                             staff: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """All product sales outputs for one filter."""
    product_sales = compute_product_sales(products, sales)
    return {
        "products": product_sales,
        "staff": compute_staff_product_sales(products, sales, staff),
        "breakdown": compute_revenue_breakdown(product_sales),
        "turnover": compute_stock_turnover(product_sales),
    }
