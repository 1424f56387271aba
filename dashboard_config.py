# =============================================================================
# Linked Geo Dashboard - configuration
# =============================================================================
"""
Constants shared by every part of the dashboard.

Edit the DATASET CONFIG block to point the dashboard at other files or to
switch between the salary and the disaster record sources. Thresholds that
drive the aggregated views (bin count, flow-stage tables, label visibility)
live here as well so that the data layer and the views always agree.
"""
# =============================================================================

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Tuple

import numpy as np
import pandas as pd

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"

# -----------------------------
# THEME CONSTANTS
# -----------------------------
BG          = "#0a0b0d"
PANEL       = "#12141a"
BORDER      = "rgba(255,255,255,0.06)"
TEXT        = "#f4f4f5"
TEXT_DIM    = "#71717a"
TEXT_BRIGHT = "#fafafa"

ACCENT      = "#10b981"
ACCENT_ALT  = "#3b82f6"
ACCENT_WARM = "#f59e0b"
HILITE      = "#ef4444"
NO_DATA     = "#2a2d35"
COUNTRY_LINE = "#000000"
FONT_FAMILY = "'Inter', system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif"
COLOR_SCALE = "Viridis"

# -----------------------------
# DATASET CONFIG
# -----------------------------
DATASETS = {
    "salary": DATA_DIR / "ds_salaries.csv",
    "disaster": DATA_DIR / "em-dat.xlsx",
}
ACTIVE_DATASET = "salary"
COUNTRY_CODES_PATH = DATA_DIR / "country-codes.csv"
TOPOLOGY_SOURCE = "https://cdn.jsdelivr.net/npm/world-atlas@2/countries-110m.json"
TOPOLOGY_OBJECT = "countries"
HTTP_TIMEOUT = 30

# -----------------------------
# MAP / GEOMETRY
# -----------------------------
MAP_WIDTH = 960
MAP_HEIGHT = 600
MAP_MARGIN = {"top": 40, "right": 0, "bottom": 40, "left": 0}
ZOOM_EXTENT = (1.0, 14.0)
LABEL_MIN_SCREEN_AREA = 1500.0
FALLBACK_CENTROID = (0.0, 0.0)
MAX_MERCATOR_LAT = 85.0511287798

# Antarctica is dropped from the working set before any geometry step
EXCLUDED_TERRITORIES = {
    "ids": {10},
    "alpha3": {"ATA"},
    "names": {"Antarctica"},
}

# -----------------------------
# AGGREGATION
# -----------------------------
HISTOGRAM_BINS = 10
TOP_CATEGORIES = 15

SALARY_RANGES = [
    (50_000, "<50k"),
    (100_000, "50k-100k"),
    (150_000, "100k-150k"),
    (200_000, "150k-200k"),
    (np.inf, "200k+"),
]
EXPERIENCE_LABELS = {"EN": "Entry", "MI": "Mid", "SE": "Senior", "EX": "Executive"}
REMOTE_LABELS = [
    (1, "on-site"),
    (100, "hybrid"),
    (np.inf, "remote"),
]

DISASTER_TYPES = ["Storm", "Drought", "Earthquake"]
DEATH_TOLL_BANDS = [
    (1, "no deaths"),
    (101, "1-100 deaths"),
    (1_001, "101-1k deaths"),
    (np.inf, "1k+ deaths"),
]
UNKNOWN_STAGE = "unknown"

# -----------------------------
# LOGGING
# -----------------------------
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def band_label(value, table, unknown: str = UNKNOWN_STAGE) -> str:
    """Label of the first (upper_bound, label) row with value < upper_bound."""
    if value is None or pd.isna(value) or value < 0:
        return unknown
    for upper, label in table:
        if value < upper:
            return label
    return unknown


def salary_stages(row) -> Tuple[str, str, str]:
    return (
        band_label(row["measure"], SALARY_RANGES),
        EXPERIENCE_LABELS.get(str(row.get("experience_level")).strip().upper(), UNKNOWN_STAGE),
        band_label(row.get("remote_ratio"), REMOTE_LABELS),
    )


def disaster_stages(row) -> Tuple[str, str, str]:
    year = row["year"]
    decade = UNKNOWN_STAGE if pd.isna(year) else f"{int(year) // 10 * 10}s"
    return (decade, str(row["category"]), band_label(row["measure"], DEATH_TOLL_BANDS))


@dataclass(frozen=True)
class DatasetProfile:
    """How one record source maps onto the standardized record columns."""
    name: str
    title: str
    measure_column: str
    measure_label: str
    year_column: str
    country_column: str
    country_space: str                      # "alpha2" | "alpha3" | "id"
    category_column: str
    stage_fn: Callable
    stage_names: Tuple[str, str, str]
    home_column: Optional[str] = None
    extra_numeric: Tuple[str, ...] = field(default_factory=tuple)
    year_stat: str = "count"                # line chart: "count" | "median"


SALARY_PROFILE = DatasetProfile(
    name="salary",
    title="Data Science Salaries",
    measure_column="salary_in_usd",
    measure_label="Salary (USD)",
    year_column="work_year",
    country_column="company_location",
    country_space="alpha2",
    category_column="job_title",
    stage_fn=salary_stages,
    stage_names=("Salary range", "Experience", "Work arrangement"),
    home_column="employee_residence",
    extra_numeric=("remote_ratio",),
    year_stat="median",
)

DISASTER_PROFILE = DatasetProfile(
    name="disaster",
    title="Natural Disasters",
    measure_column="Total Deaths",
    measure_label="Total deaths",
    year_column="Start Year",
    country_column="ISO",
    country_space="alpha3",
    category_column="Disaster Type",
    stage_fn=disaster_stages,
    stage_names=("Decade", "Disaster type", "Death toll"),
    extra_numeric=("Total Affected",),
    year_stat="count",
)

PROFILES = {p.name: p for p in (SALARY_PROFILE, DISASTER_PROFILE)}


def get_profile(name: str) -> DatasetProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise KeyError(f"Unknown dataset '{name}'. Available: {sorted(PROFILES)}") from None
