"""
Tests for client analytics: funnel, lapsed clients, heatmap.
"""
import pytest
import pandas as pd
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from salon_analytics.config import config
from salon_analytics.data.schema import normalise_records
from salon_analytics.metrics.client_analytics import (
    compute_retention_funnel,
    get_retention_summary,
    compute_time_since_last_visit,
    compute_booking_heatmap,
    heatmap_matrix,
    weekday_index,
)


def make_visits(counts):
    """Appointments giving each client the requested number of visits."""
    rows = []
    for client_id, n in counts.items():
        for i in range(n):
            rows.append({
                "id": f"{client_id}-{i}",
                "date": f"2024-06-{i + 1:02d}T10:00:00",
                "clientId": client_id,
            })
    return normalise_records(rows, "appointments")


class TestRetentionFunnel:
    """Tests for the visit-count funnel."""

    def test_reached_counts(self):
        funnel = compute_retention_funnel(make_visits({"c1": 1, "c2": 2, "c3": 1})).set_index("stage")

        assert funnel.loc["first_visit", "reached"] == 3
        assert funnel.loc["second_visit", "reached"] == 1
        assert funnel.loc["first_visit", "reached_pct"] == pytest.approx(100.0)
        assert funnel.loc["second_visit", "reached_pct"] == pytest.approx(100 / 3)

    def test_exclusive_cohorts(self):
        funnel = compute_retention_funnel(make_visits({"c1": 1, "c2": 2, "c3": 1})).set_index("stage")

        assert funnel.loc["first_visit", "clients"] == 2
        assert funnel.loc["second_visit", "clients"] == 1
        assert funnel.loc["first_visit", "pct"] == pytest.approx(200 / 3)
        assert funnel.loc["second_visit", "pct"] == pytest.approx(50.0)

    def test_zero_denominators(self):
        """Empty cohorts give 0, never NaN."""
        funnel = compute_retention_funnel(make_visits({"c1": 1}))

        assert funnel["pct"].tolist()[1:] == [0.0, 0.0, 0.0]
        assert not funnel["pct"].isna().any()
        assert not funnel["reached_pct"].isna().any()

    def test_empty(self):
        funnel = compute_retention_funnel(normalise_records([], "appointments"))

        assert len(funnel) == 4
        assert (funnel["pct"] == 0).all()
        assert (funnel["reached"] == 0).all()

    def test_more_than_three(self):
        funnel = compute_retention_funnel(make_visits({"c1": 5, "c2": 3})).set_index("stage")

        assert funnel.loc["third_visit", "clients"] == 1
        assert funnel.loc["more_than_three", "clients"] == 1
        assert funnel.loc["more_than_three", "reached"] == 1

    def test_summary(self):
        summary = get_retention_summary(make_visits({"c1": 1, "c2": 2}))

        assert summary["total_clients"] == 2
        assert summary["first_visit"] == pytest.approx(50.0)
        assert set(summary) == {"first_visit", "second_visit", "third_visit", "more_than_three", "total_clients"}


class TestTimeSinceLastVisit:
    """Tests for lapsed-client ranking."""

    def test_longest_absent_first(self):
        appointments = normalise_records([
            {"id": "a1", "date": "2024-06-01T10:00", "clientId": "c1"},
            {"id": "a2", "date": "2024-06-20T10:00", "clientId": "c1"},
            {"id": "a3", "date": "2024-06-10T10:00", "clientId": "c2", "clientName": "Walk In"},
        ], "appointments")
        clients = normalise_records([{"id": "c1", "name": "Ada"}], "clients")

        result = compute_time_since_last_visit(appointments, clients, now="2024-06-30T10:00")

        assert result["client_id"].tolist() == ["c2", "c1"]
        assert result["days_since"].tolist() == [20, 10]
        assert result["name"].tolist() == ["Walk In", "Ada"]

    def test_future_appointments_ignored(self):
        appointments = normalise_records([
            {"id": "a1", "date": "2024-06-01T10:00", "clientId": "c1"},
            {"id": "a2", "date": "2024-07-20T10:00", "clientId": "c1"},
        ], "appointments")

        result = compute_time_since_last_visit(appointments, normalise_records([], "clients"), now="2024-06-30T10:00")

        assert result["days_since"].tolist() == [29]

    def test_top_n(self):
        appointments = make_visits({f"c{i}": 1 for i in range(15)})

        result = compute_time_since_last_visit(appointments, normalise_records([], "clients"), now="2024-07-01")

        assert len(result) == 10

    def test_empty(self):
        result = compute_time_since_last_visit(normalise_records([], "appointments"), normalise_records([], "clients"))

        assert len(result) == 0


class TestBookingHeatmap:
    """Tests for the weekday x hour grid."""

    def test_single_monday_appointment(self):
        # 2024-06-03 is a Monday
        appointments = normalise_records([{"id": "a1", "date": "2024-06-03T10:00:00"}], "appointments")

        heatmap = compute_booking_heatmap(appointments)

        assert len(heatmap) == 84
        cell = heatmap[(heatmap["day_index"] == 1) & (heatmap["hour_value"] == 10)]
        assert cell["count"].iloc[0] == 1
        assert cell["day"].iloc[0] == "Monday"
        assert cell["hour"].iloc[0] == "10 AM"
        assert heatmap["count"].sum() == 1

    def test_truncated_hour_and_window(self):
        appointments = normalise_records([
            {"id": "a1", "date": "2024-06-02T12:45:00"},
            {"id": "a2", "date": "2024-06-02T07:30:00"},
            {"id": "a3", "date": "2024-06-02T20:00:00"},
        ], "appointments")

        heatmap = compute_booking_heatmap(appointments)

        cell = heatmap[(heatmap["day_index"] == 0) & (heatmap["hour_value"] == 12)]
        assert cell["count"].iloc[0] == 1
        assert cell["hour"].iloc[0] == "12 PM"
        assert heatmap["count"].sum() == 1

    def test_hour_labels(self):
        heatmap = compute_booking_heatmap(normalise_records([], "appointments"))

        labels = heatmap[heatmap["day_index"] == 0]["hour"].tolist()
        assert labels[0] == "8 AM"
        assert labels[5] == "1 PM"
        assert labels[-1] == "7 PM"

    def test_stored_instant_uses_salon_local_hour(self, monkeypatch):
        """A Firestore timestamp for 14:00 UTC is a 10 AM booking in New York."""
        monkeypatch.setattr(config, "timezone", "America/New_York")
        # 2024-06-03T14:00:00Z, a Monday
        appointments = normalise_records([
            {"id": "a1", "date": {"seconds": 1717423200, "nanoseconds": 0}},
        ], "appointments")

        heatmap = compute_booking_heatmap(appointments)

        cell = heatmap[(heatmap["day_index"] == 1) & (heatmap["hour_value"] == 10)]
        assert cell["count"].iloc[0] == 1
        assert heatmap["count"].sum() == 1

    def test_matrix(self):
        appointments = normalise_records([{"id": "a1", "date": "2024-06-03T10:00:00"}], "appointments")

        matrix = heatmap_matrix(compute_booking_heatmap(appointments))

        assert matrix.shape == (7, 12)
        assert matrix.loc["Monday", 10] == 1
        assert list(matrix.index)[0] == "Sunday"


class TestWeekdayIndex:
    def test_sunday_first(self):
        dates = pd.Series(pd.to_datetime(["2024-06-02", "2024-06-03", "2024-06-08"]))

        assert weekday_index(dates).tolist() == [0, 1, 6]
