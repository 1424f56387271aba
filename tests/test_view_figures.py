from dash import Patch

from dashboard_config import NO_DATA, SALARY_PROFILE
from selection_state import SelectionState, ViewTransform
from view_data import FlowGraph, build_views
from view_figures import (
    arc_trace_index, bar_figure, clicked_country_id, clicked_year, fill_colors, flow_figure,
    histogram_figure, label_trace_index, line_figure, map_figure, map_selection_patch, map_zoom_patch,
    scatter_figure, stats_title,
)


def test_map_figure_traces(dashboard_data):
    geoms = dashboard_data.geometries
    fig = map_figure(geoms, {840: 150_000.0}, SelectionState())
    assert len(fig.data) == len(geoms) + 3
    usa = next(i for i, g in enumerate(geoms) if g.id == 840)
    assert fig.data[usa].customdata[0] == 840
    assert fig.data[usa].fill == "toself"
    # screen y grows downwards
    assert fig.layout.yaxis.range[0] > fig.layout.yaxis.range[1]
    assert fig.layout.uirevision == "map"


def test_countries_without_statistic_are_grey(dashboard_data):
    geoms = dashboard_data.geometries
    colors = fill_colors(geoms, {840: 1.0})
    for g, color in zip(geoms, colors):
        assert (color == NO_DATA) == (g.id != 840)


def test_arcs_skip_self_links(dashboard_data, codes):
    geoms = dashboard_data.geometries
    state = SelectionState(country=codes.identity(840))
    fig = map_figure(geoms, {}, state, links={840: {840: 3, 124: 1}})
    arcs = fig.data[arc_trace_index(geoms)]
    assert len(arcs.x) > 0
    assert None in arcs.x

    only_self = map_figure(geoms, {}, state, links={840: {840: 3}})
    assert len(only_self.data[arc_trace_index(geoms)].x or []) == 0


def test_selected_country_is_labelled(dashboard_data, codes):
    geoms = dashboard_data.geometries
    state = SelectionState(country=codes.identity(124))
    labels = map_figure(geoms, {}, state, ViewTransform.identity()).data[label_trace_index(geoms)].text
    names = dict(zip([g.id for g in geoms], labels))
    assert names[124] == "Canada"
    assert names[-99] == ""


def test_patches(dashboard_data, codes):
    geoms = dashboard_data.geometries
    state = SelectionState(country=codes.identity(840))
    assert isinstance(map_selection_patch(geoms, state, {840: {276: 1}}, ViewTransform.identity(),
                                          stats={840: 1.0}), Patch)
    assert isinstance(map_zoom_patch(geoms, ViewTransform(k=4.0)), Patch)


def test_charts_render_and_empty_views_are_annotated(records, codes):
    views = build_views(records, SelectionState(), SALARY_PROFILE, codes)
    assert len(histogram_figure(views.histogram, SALARY_PROFILE).data) == 1
    assert flow_figure(views.flow, SALARY_PROFILE).data[0].type == "sankey"
    assert len(line_figure(views.yearly, SelectionState(year=2023), SALARY_PROFILE).data) == 1
    assert len(bar_figure(views.categories, SALARY_PROFILE).data) == 1
    assert list(scatter_figure(views.country_points, None, SALARY_PROFILE).data[0].customdata) == [276, 840]

    assert len(histogram_figure([], SALARY_PROFILE).layout.annotations) == 1
    assert len(flow_figure(FlowGraph(), SALARY_PROFILE).layout.annotations) == 1


def test_click_parsing():
    assert clicked_country_id({"points": [{"customdata": 840}]}) == 840
    assert clicked_country_id({"points": [{"customdata": [124]}]}) == 124
    assert clicked_country_id({"points": [{"curveNumber": 1}]}, trace_ids=[840, 124]) == 124
    assert clicked_country_id({"points": [{"curveNumber": 7}]}, trace_ids=[840]) is None
    assert clicked_country_id(None) is None
    assert clicked_year({"points": [{"x": 2022, "customdata": 2022}]}) == 2022
    assert clicked_year({"points": []}) is None


def test_stats_title(codes):
    assert stats_title(SelectionState(), {}, SALARY_PROFILE) == "Global"
    title = stats_title(SelectionState(country=codes.identity(840)), {840: 150_000.0}, SALARY_PROFILE)
    assert title == "United States of America: median salary (usd) 150,000"
    assert stats_title(SelectionState(country=codes.identity(124)), {}, SALARY_PROFILE).endswith("no records")
