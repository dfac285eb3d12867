"""
Record normalisation, column alias mapping and schema validation.

Raw collections arrive as JSON-like dicts with camelCase keys. Each collection
is normalised once into a DataFrame with a fixed snake_case column set and
defaults applied, so the aggregators never see missing fields.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from salon_analytics.config import config

logger = logging.getLogger(__name__)


class SchemaValidationError(Exception):
    """Raised when required fields are missing."""
    pass


# =============================================================================
# COLUMN ALIASES
# =============================================================================

COLUMN_ALIASES = {
    "staffId": "staff_id",
    "clientId": "client_id",
    "clientName": "client_name",
    "serviceId": "service_id",
    "promoId": "promo_id",
    "isPackage": "is_package",
    "isFirstVisit": "is_first_visit",
    "businessId": "business_id",
    "hoursPerWeek": "hours_per_week",
    "googleCalendarHours": "google_calendar_hours",
    "viewCount": "view_count",
    "productId": "product_id",
}


# =============================================================================
# ENTITY SCHEMAS
# =============================================================================
# ids:       identifiers, coerced to str, missing -> None
# text:      labels with a literal default
# numeric:   missing -> default
# fallback:  missing or non-positive -> default
# optional:  numeric, missing or non-positive -> NaN
# flags:     booleans, missing -> False
# lists:     list-valued, missing -> []
# dates:     instants, unparseable -> NaT
# required:  raw fields reported by validate_schema

ENTITY_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "appointments": {
        "ids": ["id", "staff_id", "client_id", "service_id", "promo_id", "business_id"],
        "text": {"status": "", "client_name": None},
        "numeric": {"price": 0.0},
        "fallback": {"duration": config.default_duration_minutes},
        "flags": ["is_package", "is_first_visit"],
        "lists": ["addons"],
        "dates": ["date"],
        "required": ["id", "date"],
    },
    "staff": {
        "ids": ["id", "business_id"],
        "text": {"name": "Unknown Staff", "status": ""},
        "fallback": {"hours_per_week": config.default_hours_per_week},
        "optional": ["google_calendar_hours"],
        "required": ["id"],
    },
    "clients": {
        "ids": ["id", "business_id"],
        "text": {"name": "Unknown Client"},
        "required": ["id"],
    },
    "products": {
        "ids": ["id", "business_id"],
        "text": {"name": "Unknown Product", "category": "Uncategorized"},
        "numeric": {"price": 0.0, "stock": 0.0},
        "lists": ["sales"],
        "required": ["id"],
    },
    "promotions": {
        "ids": ["id", "business_id"],
        "text": {"name": "Unknown Promotion", "code": ""},
        "fallback": {"view_count": config.default_view_count},
        "required": ["id"],
    },
    "services": {
        "ids": ["id", "business_id"],
        "text": {"name": "Unknown Service"},
        "required": ["id"],
    },
    "sales": {
        "ids": ["product_id", "staff_id", "business_id"],
        "numeric": {"quantity": 0.0},
        "dates": ["date"],
        "required": ["date"],
    },
}

COLLECTIONS = ["appointments", "staff", "clients", "products", "promotions", "services"]

# Lower-cased on normalisation
LOWERCASE_TEXT = {"status"}


def entity_columns(entity: str) -> List[str]:
    """Ordered column list for a normalised entity frame."""
    schema = ENTITY_SCHEMAS[entity]
    columns: List[str] = []
    for key in ("ids", "text", "numeric", "fallback", "optional", "flags", "lists", "dates"):
        for col in schema.get(key, []):
            if col not in columns:
                columns.append(col)
    return columns


# =============================================================================
# VALUE COERCION
# =============================================================================

def coerce_instant(value: Any) -> pd.Timestamp:
    """
    Coerce a raw date value to a naive Timestamp in the salon's wall-clock
    timezone (config.timezone).

    Accepts datetimes, ISO strings, epoch milliseconds and Firestore-style
    {"seconds": ..., "nanoseconds": ...} mappings. Epoch and Firestore values
    and tz-aware input are absolute instants and get converted; naive input is
    already wall-clock time. Anything else, including instants outside the
    nanosecond range, gives NaT.
    """
    if value is None or value is pd.NaT:
        return pd.NaT
    try:
        if isinstance(value, dict):
            seconds = value.get("seconds", value.get("_seconds"))
            if seconds is None:
                return pd.NaT
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
            ts = pd.Timestamp(int(seconds) * 1_000_000_000 + int(nanos), tz="UTC")
        elif isinstance(value, bool):
            return pd.NaT
        elif isinstance(value, (int, float, np.integer, np.floating)):
            if pd.isna(value):
                return pd.NaT
            ts = pd.Timestamp(value, unit="ms", tz="UTC")
        else:
            ts = pd.Timestamp(value)

        if pd.isna(ts):
            return pd.NaT
        ts = ts.as_unit("ns")
        if ts.tzinfo is not None:
            ts = ts.tz_convert(config.timezone).tz_localize(None)
    except (TypeError, ValueError, OverflowError):
        # OutOfBoundsDatetime is a ValueError
        return pd.NaT
    return ts


def _coerce_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if np.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def _coerce_text(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return default
    text = str(value).strip()
    return text if text else default


def _coerce_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return np.nan
    return number if np.isfinite(number) else np.nan


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    return bool(value)


def _coerce_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return []
    if isinstance(value, np.ndarray):
        return value.tolist()
    # a truthy scalar still counts as one entry
    return [value] if value else []


def _object_series(values: list, index: pd.Index) -> pd.Series:
    return pd.Series(values, index=index, dtype=object)


# =============================================================================
# NORMALISATION
# =============================================================================

def _to_frame(records: Any) -> pd.DataFrame:
    if records is None:
        return pd.DataFrame()
    if isinstance(records, pd.DataFrame):
        return records.copy()
    rows = []
    for item in records:
        if isinstance(item, dict):
            rows.append(item)
        else:
            logger.warning("Skipping non-mapping record of type %s", type(item).__name__)
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame(rows)


def _apply_aliases(df: pd.DataFrame) -> pd.DataFrame:
    renames = {
        raw: alias for raw, alias in COLUMN_ALIASES.items()
        if raw in df.columns and alias not in df.columns
    }
    return df.rename(columns=renames)


def normalise_records(records: Any, entity: str) -> pd.DataFrame:
    """
    Normalise a raw record collection into a typed entity frame.

    Args:
        records: list of dicts, DataFrame, or None (treated as empty)
        entity: key of ENTITY_SCHEMAS

    Returns:
        DataFrame with exactly entity_columns(entity), defaults applied.
    """
    if entity not in ENTITY_SCHEMAS:
        raise ValueError(f"Unknown entity: {entity}")

    schema = ENTITY_SCHEMAS[entity]
    raw = _apply_aliases(_to_frame(records)).reset_index(drop=True)
    index = raw.index

    def column(name: str) -> list:
        if name in raw.columns:
            return raw[name].tolist()
        return [None] * len(index)

    out = pd.DataFrame(index=index)

    for col in schema.get("ids", []):
        out[col] = _object_series([_coerce_id(v) for v in column(col)], index)

    for col, default in schema.get("text", {}).items():
        values = [_coerce_text(v, default) for v in column(col)]
        if col in LOWERCASE_TEXT:
            values = [v.lower() if isinstance(v, str) else v for v in values]
        out[col] = _object_series(values, index)

    for col, default in schema.get("numeric", {}).items():
        values = pd.Series([_coerce_number(v) for v in column(col)], index=index, dtype=float)
        out[col] = values.fillna(default)

    for col, default in schema.get("fallback", {}).items():
        values = pd.Series([_coerce_number(v) for v in column(col)], index=index, dtype=float)
        out[col] = values.where(values > 0, default)

    for col in schema.get("optional", []):
        values = pd.Series([_coerce_number(v) for v in column(col)], index=index, dtype=float)
        out[col] = values.where(values > 0, np.nan)

    for col in schema.get("flags", []):
        out[col] = pd.Series([_coerce_flag(v) for v in column(col)], index=index, dtype=bool)

    for col in schema.get("lists", []):
        out[col] = _object_series([_coerce_list(v) for v in column(col)], index)

    for col in schema.get("dates", []):
        stamps = [coerce_instant(v) for v in column(col)]
        out[col] = pd.to_datetime(pd.Series(stamps, index=index, dtype=object)).astype("datetime64[ns]")

    return out[entity_columns(entity)]


def normalise_collections(collections: Optional[Dict[str, Any]]) -> Dict[str, pd.DataFrame]:
    """Normalise every dashboard collection; absent collections become empty frames."""
    collections = collections or {}
    frames = {}
    for entity in COLLECTIONS:
        frames[entity] = normalise_records(collections.get(entity), entity)
    frames["sales"] = explode_product_sales(frames["products"])
    logger.debug(
        "Normalised collections: %s",
        {name: len(df) for name, df in frames.items()},
    )
    return frames


def explode_product_sales(products: pd.DataFrame) -> pd.DataFrame:
    """
    Flatten each product's embedded sales list into one row per sale.

    Sales inherit business_id from their product so the location filter
    applies to them like any other dated record.
    """
    rows = []
    if len(products) > 0:
        for product in products.itertuples(index=False):
            for sale in product.sales:
                if not isinstance(sale, dict):
                    continue
                row = {COLUMN_ALIASES.get(k, k): v for k, v in sale.items()}
                row["product_id"] = product.id
                row["business_id"] = product.business_id
                rows.append(row)
    return normalise_records(rows, "sales")


# =============================================================================
# LOOKUPS
# =============================================================================

def name_lookup(df: pd.DataFrame, key_col: str = "id", name_col: str = "name") -> pd.Series:
    """Map id -> name, first occurrence wins."""
    if len(df) == 0 or key_col not in df.columns:
        return pd.Series(dtype=object)
    unique = df[df[key_col].notna()].drop_duplicates(subset=[key_col])
    return pd.Series(unique[name_col].values, index=unique[key_col].values)


def unique_roster(df: pd.DataFrame) -> pd.DataFrame:
    """One row per id, rows without an id dropped, input order kept."""
    if len(df) == 0:
        return df.copy()
    return df[df["id"].notna()].drop_duplicates(subset=["id"]).reset_index(drop=True)


def client_name_lookup(appointments: pd.DataFrame, clients: pd.DataFrame) -> pd.Series:
    """
    Resolve client names: client record first, then the name captured on the
    appointment, then the literal default.
    """
    names = name_lookup(clients)
    if len(appointments) > 0 and "client_name" in appointments.columns:
        captured = appointments[appointments["client_id"].notna() & appointments["client_name"].notna()]
        captured = captured.drop_duplicates(subset=["client_id"])
        fallback = pd.Series(captured["client_name"].values, index=captured["client_id"].values)
        fallback = fallback[~fallback.index.isin(names.index)]
        names = pd.concat([names, fallback])
    return names


# =============================================================================
# VALIDATION
# =============================================================================

def validate_required_columns(df: pd.DataFrame, entity: str) -> Tuple[bool, List[str]]:
    """
    Validate that required raw fields exist.
    Returns (is_valid, missing_columns).
    """
    if entity not in ENTITY_SCHEMAS:
        return True, []

    df = _apply_aliases(df)
    required = ENTITY_SCHEMAS[entity].get("required", [])
    missing = [col for col in required if col not in df.columns]

    return len(missing) == 0, missing


def check_optional_columns(df: pd.DataFrame, entity: str) -> List[str]:
    """
    Check which optional raw fields are missing (defaults will be applied).
    """
    if entity not in ENTITY_SCHEMAS:
        return []

    df = _apply_aliases(df)
    required = set(ENTITY_SCHEMAS[entity].get("required", []))
    optional = [col for col in entity_columns(entity) if col not in required]
    return [col for col in optional if col not in df.columns]


def validate_schema(records: Any, entity: str, strict: bool = False) -> Dict:
    """
    Schema validation of a raw collection.

    Args:
        records: raw collection (list of dicts or DataFrame)
        entity: key of ENTITY_SCHEMAS
        strict: If True, raise on missing required fields

    Returns:
        Dict with validation results
    """
    df = _to_frame(records)
    if len(df) == 0:
        return {
            "is_valid": True,
            "missing_required": [],
            "missing_optional": [],
            "total_columns": len(df.columns),
            "total_rows": 0,
        }

    is_valid, missing_required = validate_required_columns(df, entity)
    missing_optional = check_optional_columns(df, entity)

    result = {
        "is_valid": is_valid,
        "missing_required": missing_required,
        "missing_optional": missing_optional,
        "total_columns": len(df.columns),
        "total_rows": len(df),
    }

    if strict and not is_valid:
        raise SchemaValidationError(
            f"Missing required fields in {entity}: {missing_required}"
        )

    return result
