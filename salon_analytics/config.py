"""
Application configuration management.
"""
import logging
import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            "Ignoring non-numeric %s=%r, using %s", name, value, default
        )
        return default


@dataclass
class AppConfig:
    """Application configuration with environment overrides."""

    # Environment
    app_env: str = field(default_factory=lambda: os.getenv("APP_ENV", "dev"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Salon wall-clock timezone; absolute instants are converted to it
    timezone: str = field(default_factory=lambda: os.getenv("APP_TIMEZONE", "UTC"))

    # Cache settings
    cache_ttl_seconds: int = field(default_factory=lambda: int(_env_float("CACHE_TTL_SECONDS", 3600)))

    # Record defaults
    default_hours_per_week: float = field(default_factory=lambda: _env_float("DEFAULT_HOURS_PER_WEEK", 40.0))
    default_duration_minutes: float = 60.0
    default_view_count: float = 100.0

    # Known simplifications carried over from the dashboard. Exposed here so
    # they can be tuned without touching the aggregators.
    staff_weeks_in_range: float = field(default_factory=lambda: _env_float("STAFF_WEEKS_IN_RANGE", 2.0))
    packages_sold_placeholder: float = field(default_factory=lambda: _env_float("PACKAGES_SOLD_PLACEHOLDER", 100.0))
    service_revenue_placeholder: float = field(default_factory=lambda: _env_float("SERVICE_REVENUE_PLACEHOLDER", 15000.0))

    # Ranking sizes
    top_clients_n: int = 5
    lapsed_clients_n: int = 10

    # Heatmap window (08:00 - 19:00)
    heatmap_start_hour: int = 8
    heatmap_hours: int = 12

    # Thresholds
    overbooked_threshold: float = 90.0
    well_booked_threshold: float = 70.0
    turnover_high_threshold: float = 50.0
    turnover_medium_threshold: float = 20.0

    @property
    def is_prod(self) -> bool:
        return self.app_env.lower() == "prod"


# Global config instance
config = AppConfig()


def configure_logging(level: str = None) -> None:
    """Configure root logging for scripts and the hosting dashboard."""
    level_name = (level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Location filter sentinel
ALL_LOCATIONS = "all"

# Appointment statuses counted as issues
ISSUE_STATUSES = {
    "no-show": "no_shows",
    "late": "late_starts",
    "cancelled": "cancellations",
}

ACTIVE_STAFF_STATUS = "active"

# Weekdays, Sunday first (Sun=0 ... Sat=6)
WEEKDAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]

# Revenue trend granularities
REVENUE_VIEW_MODES = ("daily", "weekly", "monthly")

# Ranking labels
LABEL_TOP_SELLER = "Top Seller"
LABEL_LOW_PERFORMER = "Low Performer"
LABEL_TOP_PERFORMER = "Top Performer"

# Booking status buckets
STATUS_OVERBOOKED = "Overbooked"
STATUS_WELL_BOOKED = "Well Booked"
STATUS_UNDERBOOKED = "Underbooked"

# Peak-day recommendations
BUSIEST_DAY_ADVICE = "Consider premium pricing or extending hours"
SLOWEST_DAY_ADVICE = "Target for promotions and marketing campaigns"
OFF_PEAK_ACTIONS = [
    "Consider special packages for off-peak times",
    "Optimize staff scheduling based on peak days",
]
