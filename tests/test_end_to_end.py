import asyncio

import pandas as pd
import pytest
from dash import Dash, Patch

from dashboard_app import build_dispatcher, create_app
from dashboard_config import NO_DATA, SALARY_PROFILE
from dataset_loader import load_sources
from selection_state import SelectionState, ViewTransform
from view_data import build_views


@pytest.fixture
def us_only_data(tmp_path, reference_csv, topology_json):
    path = tmp_path / "ds_salaries.csv"
    pd.DataFrame({
        "work_year": [2021, 2022, 2023],
        "experience_level": ["MI", "SE", "EX"],
        "salary_in_usd": ["100000", "150000", "200000"],
        "company_location": ["US", "US", "US"],
        "employee_residence": ["US", "CA", "US"],
        "remote_ratio": [0, 100, 50],
        "job_title": ["Data Analyst", "Data Scientist", "Head of Data"],
    }).to_csv(path, index=False)
    return asyncio.run(load_sources(SALARY_PROFILE, path, reference_csv, topology_json))


def test_us_median_present_and_canada_absent(us_only_data):
    views = build_views(us_only_data.records, SelectionState(), SALARY_PROFILE, us_only_data.codes)
    assert views.country_stats == {840: 150_000.0}
    assert 124 not in views.country_stats


def test_clicking_us_filters_and_clicking_again_restores_global(us_only_data):
    data = us_only_data
    state = SelectionState()
    transform = ViewTransform.identity()
    dispatcher = build_dispatcher(data, state, transform)

    dispatcher.dispatch()
    assert len(dispatcher.views.records) == 3

    state.select_country(data.codes.identity(840))
    out = dispatcher.dispatch()
    assert len(dispatcher.views.records) == 3
    assert (dispatcher.views.records["country_id"] == 840).all()
    assert out["title"] == "United States of America: median salary (usd) 150,000"
    assert isinstance(out["map"], Patch)
    assert dispatcher.views.country_links == {840: {840: 2, 124: 1}}

    state.select_country(data.codes.identity(840))
    out = dispatcher.dispatch()
    assert state.is_global
    assert out["title"] == "Global"
    assert sum(b.count for b in dispatcher.views.histogram) == 3


def test_year_click_filters_every_view(us_only_data):
    state = SelectionState()
    dispatcher = build_dispatcher(us_only_data, state, ViewTransform.identity())
    state.select_year(2022)
    dispatcher.dispatch()
    assert dispatcher.views.records["measure"].tolist() == [150_000]
    assert len(dispatcher.views.yearly) == 3


def test_create_app(dashboard_data):
    app = create_app(dashboard_data)
    assert isinstance(app, Dash)
    assert app.title == "Data Science Salaries Dashboard"
    assert app.layout is not None


def _assigned(patch, key):
    """Values a Patch assigns to data[i][key], keyed by trace index."""
    return {
        op["location"][1]: op["params"]["value"]
        for op in patch.to_plotly_json()["operations"]
        if op["operation"] == "Assign" and op["location"][0] == "data" and op["location"][-1] == key
    }


def test_map_colours_follow_country_selection(tmp_path, reference_csv, topology_json):
    path = tmp_path / "ds_salaries.csv"
    pd.DataFrame({
        "work_year": [2022, 2022, 2022, 2022],
        "experience_level": ["MI", "SE", "EX", "SE"],
        "salary_in_usd": [100000, 150000, 200000, 50000],
        "company_location": ["US", "US", "US", "CA"],
        "employee_residence": ["US", "US", "US", "CA"],
        "remote_ratio": [0, 100, 50, 0],
        "job_title": ["Data Analyst", "Data Scientist", "Head of Data", "Data Analyst"],
    }).to_csv(path, index=False)
    data = asyncio.run(load_sources(SALARY_PROFILE, path, reference_csv, topology_json))
    index = {g.id: i for i, g in enumerate(data.geometries)}

    state = SelectionState()
    dispatcher = build_dispatcher(data, state, ViewTransform.identity())
    fills = _assigned(dispatcher.dispatch()["map"], "fillcolor")
    assert fills[index[124]] != NO_DATA and fills[index[840]] != NO_DATA

    state.select_country(data.codes.identity(840))
    out = dispatcher.dispatch()
    assert dispatcher.views.country_stats == {840: 150_000.0}
    fills = _assigned(out["map"], "fillcolor")
    assert fills[index[124]] == NO_DATA
    assert fills[index[840]] != NO_DATA
    assert _assigned(out["map"], "text")[index[124]].endswith("No data")
    # unselected countries are dimmed, not removed
    assert _assigned(out["map"], "opacity")[index[124]] < 1.0
