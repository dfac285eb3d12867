"""
Tests for record normalisation and schema validation.
"""
import pytest
import pandas as pd
import numpy as np
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from salon_analytics.config import config
from salon_analytics.data.schema import (
    normalise_records,
    normalise_collections,
    explode_product_sales,
    coerce_instant,
    client_name_lookup,
    entity_columns,
    validate_required_columns,
    check_optional_columns,
    validate_schema,
    SchemaValidationError,
)


class TestNormaliseAppointments:
    """Tests for appointment normalisation defaults."""

    def test_camel_case_aliases(self):
        """camelCase keys should map to snake_case columns."""
        df = normalise_records([{
            "id": "a1",
            "date": "2024-06-02T10:00:00",
            "staffId": "s1",
            "clientId": "c1",
            "serviceId": "sv1",
            "promoId": "p1",
            "isPackage": True,
            "isFirstVisit": True,
            "businessId": "b1",
        }], "appointments")

        row = df.iloc[0]
        assert row["staff_id"] == "s1"
        assert row["client_id"] == "c1"
        assert row["service_id"] == "sv1"
        assert row["promo_id"] == "p1"
        assert row["business_id"] == "b1"
        assert bool(row["is_package"]) is True
        assert bool(row["is_first_visit"]) is True

    def test_missing_fields_get_defaults(self):
        """Absent price, duration, addons and flags should default."""
        df = normalise_records([{"id": "a1", "date": "2024-06-02"}], "appointments")

        row = df.iloc[0]
        assert row["price"] == 0
        assert row["duration"] == 60
        assert row["addons"] == []
        assert bool(row["is_package"]) is False
        assert row["staff_id"] is None

    def test_zero_duration_falls_back(self):
        """A zero duration is treated like a missing one."""
        df = normalise_records([{"id": "a1", "duration": 0}], "appointments")

        assert df["duration"].iloc[0] == 60

    def test_non_numeric_price(self):
        """Unparseable prices become 0."""
        df = normalise_records([
            {"id": "a1", "price": "abc"},
            {"id": "a2", "price": "12.5"},
        ], "appointments")

        assert df["price"].tolist() == [0.0, 12.5]

    def test_status_lowercased(self):
        df = normalise_records([{"id": "a1", "status": " No-Show "}], "appointments")

        assert df["status"].iloc[0] == "no-show"

    def test_numeric_ids_become_strings(self):
        """Integer ids (including float-coerced ones) compare as strings."""
        df = normalise_records([
            {"id": 1, "staffId": 7},
            {"id": 2, "staffId": None},
        ], "appointments")

        assert df["id"].tolist() == ["1", "2"]
        assert df["staff_id"].iloc[0] == "7"
        assert df["staff_id"].iloc[1] is None

    def test_unparseable_date_is_nat(self):
        df = normalise_records([{"id": "a1", "date": "not a date"}], "appointments")

        assert pd.isna(df["date"].iloc[0])


class TestNormaliseCollections:
    """Tests for absent and empty collections."""

    def test_none_is_empty_frame(self):
        df = normalise_records(None, "staff")

        assert len(df) == 0
        assert list(df.columns) == entity_columns("staff")

    def test_unknown_entity_raises(self):
        with pytest.raises(ValueError):
            normalise_records([], "invoices")

    def test_unknown_names(self):
        """Missing names default to 'Unknown <Entity>'."""
        assert normalise_records([{"id": "s1"}], "staff")["name"].iloc[0] == "Unknown Staff"
        assert normalise_records([{"id": "c1"}], "clients")["name"].iloc[0] == "Unknown Client"
        assert normalise_records([{"id": "p1"}], "products")["name"].iloc[0] == "Unknown Product"
        assert normalise_records([{"id": "x1"}], "promotions")["name"].iloc[0] == "Unknown Promotion"
        assert normalise_records([{"id": "v1"}], "services")["name"].iloc[0] == "Unknown Service"

    def test_staff_hours_defaults(self):
        df = normalise_records([
            {"id": "s1"},
            {"id": "s2", "hoursPerWeek": 30, "googleCalendarHours": 25},
        ], "staff")

        assert df["hours_per_week"].tolist() == [40.0, 30.0]
        assert np.isnan(df["google_calendar_hours"].iloc[0])
        assert df["google_calendar_hours"].iloc[1] == 25

    def test_promotion_view_count_default(self):
        df = normalise_records([{"id": "p1"}, {"id": "p2", "viewCount": 250}], "promotions")

        assert df["view_count"].tolist() == [100.0, 250.0]

    def test_all_collections_present(self):
        frames = normalise_collections({"staff": [{"id": "s1"}]})

        for name in ["appointments", "staff", "clients", "products", "promotions", "services", "sales"]:
            assert name in frames
        assert len(frames["staff"]) == 1
        assert len(frames["appointments"]) == 0


class TestCoerceInstant:
    """Tests for date coercion."""

    def test_iso_string(self):
        assert coerce_instant("2024-06-02T10:30:00") == pd.Timestamp("2024-06-02 10:30:00")

    def test_tz_aware_converted_to_salon_timezone(self, monkeypatch):
        monkeypatch.setattr(config, "timezone", "UTC")
        assert coerce_instant("2024-06-02T10:00:00+02:00") == pd.Timestamp("2024-06-02 08:00:00")

        monkeypatch.setattr(config, "timezone", "America/New_York")
        assert coerce_instant("2024-06-02T10:00:00+02:00") == pd.Timestamp("2024-06-02 04:00:00")

    def test_firestore_timestamp(self, monkeypatch):
        monkeypatch.setattr(config, "timezone", "UTC")
        value = {"seconds": 1717322400, "nanoseconds": 0}
        assert coerce_instant(value) == pd.Timestamp("2024-06-02 10:00:00")

    def test_epoch_millis(self, monkeypatch):
        monkeypatch.setattr(config, "timezone", "UTC")
        assert coerce_instant(1717322400000) == pd.Timestamp("2024-06-02 10:00:00")

    def test_naive_input_is_wall_clock(self, monkeypatch):
        monkeypatch.setattr(config, "timezone", "Asia/Tokyo")
        assert coerce_instant("2024-06-02T10:00:00") == pd.Timestamp("2024-06-02 10:00:00")

    def test_out_of_nanosecond_range(self):
        """Parseable dates pandas cannot hold at ns resolution become NaT."""
        assert pd.isna(coerce_instant("3000-01-01T10:00"))
        assert pd.isna(coerce_instant("0001-01-01"))
        assert pd.isna(coerce_instant(10 ** 17))

    def test_out_of_range_date_in_records(self):
        df = normalise_records([
            {"id": "a1", "date": "3000-01-01T10:00"},
            {"id": "a2", "date": "2024-06-02T10:00"},
        ], "appointments")

        assert pd.isna(df["date"].iloc[0])
        assert df["date"].iloc[1] == pd.Timestamp("2024-06-02 10:00")

    def test_garbage(self):
        assert pd.isna(coerce_instant("garbage"))
        assert pd.isna(coerce_instant(None))
        assert pd.isna(coerce_instant(True))


class TestExplodeProductSales:
    """Tests for flattening embedded product sales."""

    def test_one_row_per_sale(self):
        products = normalise_records([
            {
                "id": "p1",
                "price": 10,
                "businessId": "b1",
                "sales": [
                    {"date": "2024-06-01", "quantity": 2, "staffId": "s1"},
                    {"date": "2024-06-02", "quantity": 1, "staffId": "s2"},
                ],
            },
            {"id": "p2", "price": 5},
        ], "products")

        sales = explode_product_sales(products)

        assert len(sales) == 2
        assert sales["product_id"].tolist() == ["p1", "p1"]
        assert sales["staff_id"].tolist() == ["s1", "s2"]
        assert sales["business_id"].tolist() == ["b1", "b1"]
        assert sales["quantity"].sum() == 3

    def test_no_products(self):
        sales = explode_product_sales(normalise_records([], "products"))

        assert len(sales) == 0
        assert "product_id" in sales.columns


class TestClientNameLookup:
    """Tests for client name resolution."""

    def test_client_record_wins_then_appointment_name(self):
        appointments = normalise_records([
            {"id": "a1", "clientId": "c1", "clientName": "Old Name"},
            {"id": "a2", "clientId": "c2", "clientName": "Walk In"},
        ], "appointments")
        clients = normalise_records([{"id": "c1", "name": "Ada"}], "clients")

        names = client_name_lookup(appointments, clients)

        assert names["c1"] == "Ada"
        assert names["c2"] == "Walk In"


class TestValidateSchema:
    """Tests for raw collection validation."""

    def test_required_present(self):
        df = pd.DataFrame({"id": ["a1"], "date": ["2024-06-01"]})

        is_valid, missing = validate_required_columns(df, "appointments")

        assert is_valid is True
        assert missing == []

    def test_missing_required(self):
        df = pd.DataFrame({"id": ["a1"]})

        is_valid, missing = validate_required_columns(df, "appointments")

        assert is_valid is False
        assert missing == ["date"]

    def test_optional_uses_aliases(self):
        """camelCase raw fields count as present."""
        df = pd.DataFrame({"id": ["a1"], "date": ["2024-06-01"], "staffId": ["s1"]})

        missing = check_optional_columns(df, "appointments")

        assert "staff_id" not in missing
        assert "price" in missing

    def test_strict_mode_raises(self):
        with pytest.raises(SchemaValidationError):
            validate_schema([{"name": "No id"}], "staff", strict=True)

    def test_non_strict_returns_result(self):
        result = validate_schema([{"name": "No id"}], "staff", strict=False)

        assert result["is_valid"] is False
        assert result["missing_required"] == ["id"]
        assert result["total_rows"] == 1

    def test_empty_collection_is_valid(self):
        result = validate_schema(None, "appointments", strict=True)

        assert result["is_valid"] is True
        assert result["total_rows"] == 0
