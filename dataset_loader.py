"""
Dataset loader (record table + reference table + topology -> DashboardData)
==========================================================================

The dashboard needs three sources before it can draw anything: the record
table (salary CSV or EM-DAT workbook), the country reference table and the
world topology. They are fetched concurrently and the dashboard only starts
when all of them succeed - a failed load is fatal, there is no partial UI.

Ingestion is an explicit parse-and-validate step: numeric fields arriving as
text are converted with `pd.to_numeric`, values that do not parse are
counted and logged, and country codes are resolved to numeric ids once. Rows
whose code does not resolve stay in the frame (histograms still count them)
but carry `<NA>` as their country id.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd
import requests

from country_codes import CountryCodes
from country_geometry import (
    CountryGeometry, CountryShape, MercatorProjection, build_country_geometries,
    exclude_territories, geometry_index, topology_to_shapes,
)
from dashboard_config import (
    COUNTRY_CODES_PATH, DATASETS, DISASTER_TYPES, HTTP_TIMEOUT, MAP_HEIGHT, MAP_WIDTH,
    TOPOLOGY_OBJECT, TOPOLOGY_SOURCE, DatasetProfile,
)

logger = logging.getLogger(__name__)

Source = Union[str, Path]


class DatasetLoadError(RuntimeError):
    """A startup source could not be fetched or parsed."""


@dataclass
class DashboardData:
    profile: DatasetProfile
    records: pd.DataFrame
    codes: CountryCodes
    shapes: List[CountryShape]
    geometries: List[CountryGeometry]
    projection: MercatorProjection

    @property
    def geometry_by_id(self) -> Dict[int, CountryGeometry]:
        return geometry_index(self.geometries)


# -----------------------------
# READERS
# -----------------------------
def _is_url(source: Source) -> bool:
    return str(source).startswith(("http://", "https://"))


def read_table(source: Source, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """CSV or Excel; Excel reads the first sheet unless `sheet_name` is given."""
    suffix = Path(str(source)).suffix.lower()
    if suffix == ".xls":
        raise ValueError(f"Legacy .xls workbooks are not supported, save {source} as .xlsx")
    if suffix == ".xlsx":
        sheets = pd.read_excel(source, sheet_name=None)
        sheet = sheet_name or next(iter(sheets), None)
        if sheet not in sheets:
            raise KeyError(f'Sheet "{sheet}" not found in file {source}')
        return sheets[sheet]
    return pd.read_csv(source)


def read_reference(source: Source) -> CountryCodes:
    # Namibia's alpha-2 code is "NA"
    df = pd.read_csv(source, dtype=str, keep_default_na=False, na_values=[""])
    return CountryCodes.from_frame(df)


def read_topology(source: Source) -> dict:
    if _is_url(source):
        response = requests.get(str(source), timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        return response.json()
    with open(source, encoding="utf-8") as fh:
        return json.load(fh)


# -----------------------------
# INGESTION
# -----------------------------
def filter_disaster_types(df: pd.DataFrame, column: str = "Disaster Type",
                          kept: List[str] = DISASTER_TYPES) -> pd.DataFrame:
    return df[df[column].isin(kept)].reset_index(drop=True)


def _parse_numeric(df: pd.DataFrame, column: str) -> pd.Series:
    raw = df[column]
    parsed = pd.to_numeric(raw.astype(str).str.replace(",", "", regex=False).str.strip(), errors="coerce")
    invalid = parsed.isna() & raw.notna() & (raw.astype(str).str.strip() != "")
    if invalid.any():
        logger.warning("%d values in '%s' are not numeric and are excluded from numeric views: %s",
                       int(invalid.sum()), column, raw[invalid].astype(str).unique()[:5].tolist())
    return parsed


def ingest_records(df: pd.DataFrame, profile: DatasetProfile, codes: CountryCodes) -> pd.DataFrame:
    """Validate a raw record table and add the standardized columns."""
    required = [profile.measure_column, profile.year_column, profile.country_column, profile.category_column]
    if profile.home_column:
        required.append(profile.home_column)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise KeyError(f"Missing required column(s) {missing} for dataset '{profile.name}'. "
                       f"Available={list(df.columns)}")

    out = df.copy()
    if profile.name == "disaster":
        out = filter_disaster_types(out, profile.category_column)

    out["measure"] = _parse_numeric(out, profile.measure_column)
    out["year"] = _parse_numeric(out, profile.year_column).round().astype("Int64")
    for col in profile.extra_numeric:
        if col in out.columns:
            out[col] = _parse_numeric(out, col)
    out["category"] = out[profile.category_column].fillna("Unknown").astype(str).str.strip()

    out["country_id"] = codes.resolve_series(out[profile.country_column], profile.country_space)
    if profile.home_column:
        out["home_id"] = codes.resolve_series(out[profile.home_column], profile.country_space)
    else:
        out["home_id"] = pd.array([pd.NA] * len(out), dtype="Int64")

    unresolved = out.loc[out["country_id"].isna(), profile.country_column].dropna().unique()
    if len(unresolved) > 0:
        logger.warning("%d country codes did not resolve, rows kept without a country: %s",
                       len(unresolved), list(unresolved[:10]))
    return out


# -----------------------------
# STARTUP LOAD
# -----------------------------
async def load_sources(profile: DatasetProfile, records_source: Source,
                       reference_source: Optional[Source] = COUNTRY_CODES_PATH,
                       topology_source: Source = TOPOLOGY_SOURCE,
                       topology_object: str = TOPOLOGY_OBJECT,
                       width: float = MAP_WIDTH, height: float = MAP_HEIGHT) -> DashboardData:
    """Fetch every source concurrently; any failure aborts the whole load."""
    reference = (asyncio.to_thread(read_reference, reference_source) if reference_source
                 else asyncio.to_thread(CountryCodes.from_pycountry))
    try:
        raw, codes, topology = await asyncio.gather(
            asyncio.to_thread(read_table, records_source),
            reference,
            asyncio.to_thread(read_topology, topology_source),
        )
        records = ingest_records(raw, profile, codes)
        shapes = exclude_territories(topology_to_shapes(topology, topology_object))
    except Exception as exc:
        raise DatasetLoadError(f"Failed to load dashboard data: {exc}") from exc

    projection = MercatorProjection.fit_size(width, height, shapes)
    geometries = build_country_geometries(shapes, projection)
    logger.info("Loaded %s: %d records, %d reference countries, %d shapes",
                profile.name, len(records), len(codes), len(shapes))
    return DashboardData(profile=profile, records=records, codes=codes, shapes=shapes,
                         geometries=geometries, projection=projection)


def load_dashboard_data(profile: DatasetProfile, records_source: Optional[Source] = None, **kwargs) -> DashboardData:
    records_source = records_source or DATASETS[profile.name]
    return asyncio.run(load_sources(profile, records_source, **kwargs))
