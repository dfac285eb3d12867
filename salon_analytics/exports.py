"""
Export utilities: plain JSON-serialisable metric structures.
"""
import json
import math
from datetime import date, datetime
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd


def to_serialisable(value: Any) -> Any:
    """
    Convert metric values to plain Python.

    DataFrames become lists of row dicts, timestamps ISO strings, numpy
    scalars Python numbers, NaN/NaT None.
    """
    if isinstance(value, pd.DataFrame):
        return [
            {str(k): to_serialisable(v) for k, v in row.items()}
            for row in value.to_dict(orient="records")
        ]
    if isinstance(value, pd.Series):
        return [to_serialisable(v) for v in value.tolist()]
    if isinstance(value, dict):
        return {str(k): to_serialisable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_serialisable(v) for v in value]
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number
    return value


def bundle_to_dict(bundle: Dict[str, Any]) -> Dict[str, Any]:
    """Dashboard bundle as nested plain dicts/lists."""
    return to_serialisable(bundle)


def bundle_to_json(bundle: Dict[str, Any], indent: Optional[int] = None) -> str:
    """Dashboard bundle as a JSON string."""
    return json.dumps(bundle_to_dict(bundle), indent=indent)
