# =============================================================================
# Linked Geo Dashboard
# =============================================================================
"""
Linked-view dashboard for country-keyed record datasets.

Loads a record table (data science salaries or EM-DAT natural disasters),
reconciles its country codes against the reference table and the world
topology, and shows coordinated views that all follow one selection.

FEATURES:
- World map: per-country median of the measure, labels by landmass size,
  arcs to the countries linked with the selected one
- Histogram: distribution of the measure
- Flow diagram: three categorical stages per record (Sankey)
- Line chart: per-year statistic, click a year to select it
- Scatter chart: records vs median per country, click to select
- Bar chart: most frequent categories

LINKED VIEW INTERACTIONS:
- Click a country on the map or the scatter -> filter every view to it
- Click the same country again -> back to Global
- Click a year on the line chart -> filter every other view to that year

USAGE:
    python dashboard_app.py
    Open browser to http://127.0.0.1:8050/
"""
# =============================================================================

import logging

from dash import Dash, Input, Output, State, ctx, dcc, html, no_update

from dashboard_config import (
    ACCENT, ACTIVE_DATASET, BG, BORDER, FONT_FAMILY, LOG_FORMAT, LOG_LEVEL, MAP_HEIGHT, MAP_WIDTH,
    PANEL, TEXT, TEXT_BRIGHT, TEXT_DIM, get_profile,
)
from dataset_loader import DashboardData, DatasetLoadError, load_dashboard_data
from selection_state import RenderDispatcher, SelectionState, ViewTransform
from view_data import build_views
from view_figures import (
    bar_figure, clicked_country_id, clicked_year, flow_figure, histogram_figure, line_figure,
    map_figure, map_selection_patch, map_zoom_patch, scatter_figure, stats_title,
)

logger = logging.getLogger(__name__)

# -----------------------------
# STYLES
# -----------------------------
CARD_STYLE = {
    "background": PANEL, "border": f"1px solid {BORDER}", "borderRadius": "14px",
    "padding": "18px", "boxShadow": "0 6px 20px rgba(0,0,0,0.25)",
}
NAV_STYLE = {
    "padding": "24px 32px", "borderBottom": f"1px solid {BORDER}",
    "background": "linear-gradient(180deg, #0d0e12 0%, #0a0b0d 100%)",
    "display": "flex", "alignItems": "center", "justifyContent": "space-between",
}
BTN_STYLE = {
    "background": "transparent", "color": ACCENT, "border": f"1px solid {ACCENT}",
    "borderRadius": "8px", "padding": "8px 16px", "cursor": "pointer", "fontWeight": 600,
}
GRAPH_CONFIG = {"displayModeBar": False}

INDEX_STRING = """
<!DOCTYPE html>
<html>
<head>
    {%metas%}
    <title>{%title%}</title>
    {%css%}
    <style>
    * { box-sizing: border-box; }
    body { margin: 0; padding: 0; background: #0a0b0d; }
    .panel-hover { transition: all 0.3s cubic-bezier(0.4, 0, 0.2, 1); }
    .panel-hover:hover { transform: translateY(-2px); box-shadow: 0 12px 40px rgba(0,0,0,0.4); }
    ::-webkit-scrollbar { width: 12px; height: 12px; }
    ::-webkit-scrollbar-track { background: #0a0b0d; }
    ::-webkit-scrollbar-thumb { background: rgba(16, 185, 129, 0.4); border-radius: 6px; }
    </style>
</head>
<body>
    {%app_entry%}
    <footer>
        {%config%}
        {%scripts%}
        {%renderer%}
    </footer>
</body>
</html>
"""


# -----------------------------
# DISPATCH
# -----------------------------
def build_dispatcher(data: DashboardData, state: SelectionState, transform: ViewTransform) -> RenderDispatcher:
    profile = data.profile
    dispatcher = RenderDispatcher(state, lambda s: build_views(data.records, s, profile, data.codes))
    dispatcher.add_full_view("histogram", lambda views, s: histogram_figure(views.histogram, profile))
    dispatcher.add_full_view("flow", lambda views, s: flow_figure(views.flow, profile))
    dispatcher.add_full_view("line", lambda views, s: line_figure(views.yearly, s, profile))
    dispatcher.add_full_view("bar", lambda views, s: bar_figure(views.categories, profile))
    dispatcher.add_full_view("scatter", lambda views, s: scatter_figure(views.country_points, s, profile))
    dispatcher.add_incremental_view("map", lambda: map_selection_patch(
        data.geometries, dispatcher.state, dispatcher.views.country_links, transform,
        stats=dispatcher.views.country_stats, measure_label=profile.measure_label,
    ))
    dispatcher.add_incremental_view("title", lambda: stats_title(
        dispatcher.state, dispatcher.views.country_stats, profile))
    return dispatcher


def _panel(title: str, graph_id: str, figure, height: str = "40vh"):
    return html.Div(className="panel-hover", style=CARD_STYLE, children=[
        html.H3(title, style={"margin": "0 0 12px 0", "fontSize": "16px", "opacity": 0.85}),
        dcc.Graph(id=graph_id, figure=figure, style={"height": height}, config=GRAPH_CONFIG),
    ])


# -----------------------------
# APP
# -----------------------------
def create_app(data: DashboardData) -> Dash:
    profile = data.profile
    geometries = data.geometries
    trace_ids = [g.id for g in geometries]

    state = SelectionState()
    transform = ViewTransform.identity(MAP_WIDTH, MAP_HEIGHT)
    dispatcher = build_dispatcher(data, state, transform)
    initial = dispatcher.dispatch()
    initial_map = map_figure(geometries, dispatcher.views.country_stats, state, transform,
                             measure_label=profile.measure_label)

    external_css = ["https://fonts.googleapis.com/css2?family=Inter:wght@300;400;500;600;700;800&display=swap"]
    app = Dash(__name__, external_stylesheets=external_css)
    app.title = f"{profile.title} Dashboard"
    app.index_string = INDEX_STRING

    app.layout = html.Div(style={"background": BG, "color": TEXT, "minHeight": "100vh", "fontFamily": FONT_FAMILY}, children=[
        dcc.Store(id="selection-store", data=state.to_store()),
        dcc.Store(id="transform-store", data=transform.to_store()),

        html.Div(style=NAV_STYLE, children=[
            html.Div(children=[
                html.Div(profile.title, style={"fontWeight": 700, "fontSize": "28px", "color": TEXT_BRIGHT}),
                html.Div(id="selection-title", children=initial["title"],
                         style={"fontSize": "14px", "color": TEXT_DIM, "marginTop": "4px"}),
            ]),
            html.Button("Reset selection", id="reset-selection", n_clicks=0, style=BTN_STYLE),
        ]),

        html.Div(style={"padding": "24px 32px", "display": "grid", "gap": "24px"}, children=[
            html.Div(className="panel-hover", style=CARD_STYLE, children=[
                html.P("Click a country to filter every view, click it again to return to Global. "
                       "Scroll to zoom, drag to pan, double-click to reset.",
                       style={"fontSize": "12px", "color": TEXT_DIM, "margin": "0 0 12px 0"}),
                dcc.Graph(id="map", figure=initial_map, style={"height": "65vh"},
                          config={"displayModeBar": False, "scrollZoom": True}),
            ]),
            html.Div(style={"display": "grid", "gridTemplateColumns": "1fr 1fr", "gap": "24px"}, children=[
                _panel("Distribution", "histogram", initial["histogram"]),
                _panel("Per year", "line", initial["line"]),
                _panel("Flow", "flow", initial["flow"], height="45vh"),
                _panel("Countries", "scatter", initial["scatter"], height="45vh"),
            ]),
            _panel("Categories", "bar", initial["bar"], height="50vh"),
        ]),
    ])

    # -----------------------------
    # CLICK SELECTION: Map + Scatter + Line
    # -----------------------------
    @app.callback(
        Output("selection-store", "data"),
        Output("map", "clickData"),
        Output("scatter", "clickData"),
        Output("line", "clickData"),
        Input("map", "clickData"),
        Input("scatter", "clickData"),
        Input("line", "clickData"),
        Input("reset-selection", "n_clicks"),
        State("selection-store", "data"),
        prevent_initial_call=True,
    )
    def update_selection(map_click, scatter_click, line_click, reset_clicks, stored):
        trigger = ctx.triggered_id
        current = SelectionState.from_store(stored, data.codes)

        if trigger == "reset-selection":
            current.clear()
        elif trigger == "map" and map_click:
            cid = clicked_country_id(map_click, trace_ids)
            if cid is None or data.codes.identity(cid) is None:
                return no_update, None, no_update, no_update
            current.select_country(data.codes.identity(cid))
        elif trigger == "scatter" and scatter_click:
            cid = clicked_country_id(scatter_click)
            if cid is None or data.codes.identity(cid) is None:
                return no_update, no_update, None, no_update
            current.select_country(data.codes.identity(cid))
        elif trigger == "line" and line_click:
            current.select_year(clicked_year(line_click))
        else:
            return no_update, no_update, no_update, no_update

        # cleared so that clicking the same point again fires a new event
        return current.to_store(), None, None, None

    # -----------------------------
    # RENDER DISPATCH
    # -----------------------------
    @app.callback(
        Output("map", "figure", allow_duplicate=True),
        Output("histogram", "figure"),
        Output("flow", "figure"),
        Output("line", "figure"),
        Output("bar", "figure"),
        Output("scatter", "figure"),
        Output("selection-title", "children"),
        Input("selection-store", "data"),
        State("transform-store", "data"),
        prevent_initial_call=True,
    )
    def render_views(stored, stored_transform):
        current = SelectionState.from_store(stored, data.codes)
        view = ViewTransform.from_store(stored_transform, MAP_WIDTH, MAP_HEIGHT)
        out = build_dispatcher(data, current, view).dispatch()
        return out["map"], out["histogram"], out["flow"], out["line"], out["bar"], out["scatter"], out["title"]

    # -----------------------------
    # MAP ZOOM (label visibility)
    # -----------------------------
    @app.callback(
        Output("transform-store", "data"),
        Output("map", "figure", allow_duplicate=True),
        Input("map", "relayoutData"),
        State("transform-store", "data"),
        State("selection-store", "data"),
        prevent_initial_call=True,
    )
    def update_zoom(relayout, stored_transform, stored):
        previous = ViewTransform.from_store(stored_transform, MAP_WIDTH, MAP_HEIGHT)
        view = ViewTransform.from_relayout(relayout, previous, MAP_WIDTH, MAP_HEIGHT)
        if view == previous:
            return no_update, no_update
        current = SelectionState.from_store(stored, data.codes)
        return view.to_store(), map_zoom_patch(geometries, view, current)

    return app


# -----------------------------
# RUN
# -----------------------------
def main(dataset: str = ACTIVE_DATASET) -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    profile = get_profile(dataset)
    try:
        data = load_dashboard_data(profile)
    except DatasetLoadError as exc:
        logger.error("Dashboard not started: %s", exc)
        raise SystemExit(1) from exc
    app = create_app(data)
    app.run(debug=False)


if __name__ == "__main__":
    main()
