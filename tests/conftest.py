import json

import pandas as pd
import pytest

from country_codes import CountryCodes
from country_geometry import MercatorProjection, build_country_geometries, exclude_territories, topology_to_shapes
from dashboard_config import SALARY_PROFILE
from dataset_loader import DashboardData, ingest_records

REFERENCE_ROWS = [
    {"country_code_alpha2": "US", "country_code_alpha3": "USA", "country_id": "840", "country_name": "United States of America"},
    {"country_code_alpha2": "CA", "country_code_alpha3": "CAN", "country_id": "124", "country_name": "Canada"},
    {"country_code_alpha2": "DE", "country_code_alpha3": "DEU", "country_id": "276", "country_name": "Germany"},
    {"country_code_alpha2": "IN", "country_code_alpha3": "IND", "country_id": "356", "country_name": "India"},
    {"country_code_alpha2": "NA", "country_code_alpha3": "NAM", "country_id": "516", "country_name": "Namibia"},
    {"country_code_alpha2": "AQ", "country_code_alpha3": "ATA", "country_id": "010", "country_name": "Antarctica"},
]


@pytest.fixture
def reference_rows():
    return [dict(row) for row in REFERENCE_ROWS]


@pytest.fixture
def codes(reference_rows):
    return CountryCodes.from_rows(reference_rows)


@pytest.fixture
def reference_csv(tmp_path, reference_rows):
    path = tmp_path / "country-codes.csv"
    pd.DataFrame(reference_rows).to_csv(path, index=False)
    return path


@pytest.fixture
def topology():
    """Quantized topology: USA with two parts, Canada on a reversed arc, Antarctica, one empty shape."""
    return {
        "type": "Topology",
        "transform": {"scale": [1, 1], "translate": [0, 0]},
        "arcs": [
            [[0, 0], [10, 0], [0, 10], [-10, 0], [0, -10]],
            [[20, 0], [2, 0], [0, 2], [-2, 0], [0, -2]],
            [[-30, 20], [10, 0], [0, 10], [-10, 0], [0, -10]],
            [[0, -80], [10, 0], [0, 10], [-10, 0], [0, -10]],
        ],
        "objects": {
            "countries": {
                "type": "GeometryCollection",
                "geometries": [
                    {"type": "MultiPolygon", "id": "840", "properties": {"name": "United States of America"},
                     "arcs": [[[0]], [[1]]]},
                    {"type": "Polygon", "id": "124", "properties": {"name": "Canada"}, "arcs": [[-3]]},
                    {"type": "Polygon", "id": "010", "properties": {"name": "Antarctica"}, "arcs": [[3]]},
                    {"type": None, "id": "-99", "properties": {"name": "N. Cyprus"}},
                ],
            }
        },
    }


@pytest.fixture
def topology_json(tmp_path, topology):
    path = tmp_path / "countries.json"
    path.write_text(json.dumps(topology), encoding="utf-8")
    return path


@pytest.fixture
def salary_raw():
    return pd.DataFrame({
        "work_year": [2022, 2022, 2023, 2023, 2023],
        "experience_level": ["SE", "MI", "SE", "EN", "EX"],
        "salary_in_usd": [100000, 150000, 200000, 60000, 80000],
        "company_location": ["US", "US", "US", "DE", "XX"],
        "employee_residence": ["US", "IN", "DE", "DE", "US"],
        "remote_ratio": [100, 0, 50, 100, 0],
        "job_title": ["Data Scientist", "Data Engineer", "Data Scientist", "ML Engineer", "Data Scientist"],
    })


@pytest.fixture
def salary_csv(tmp_path, salary_raw):
    path = tmp_path / "ds_salaries.csv"
    salary_raw.to_csv(path, index=False)
    return path


@pytest.fixture
def records(salary_raw, codes):
    return ingest_records(salary_raw, SALARY_PROFILE, codes)


@pytest.fixture
def dashboard_data(records, codes, topology):
    shapes = exclude_territories(topology_to_shapes(topology))
    projection = MercatorProjection.fit_size(960, 600, shapes)
    return DashboardData(
        profile=SALARY_PROFILE, records=records, codes=codes, shapes=shapes,
        geometries=build_country_geometries(shapes, projection), projection=projection,
    )
