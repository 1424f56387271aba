"""
Plotly figures for every linked view.

The map is drawn in projected screen coordinates as ordinary filled
`go.Scatter` traces, one per country, followed by three overlay traces:

    [country 0 .. country n-1, labels, arcs, colorbar]

That fixed order is what lets `map_selection_patch` / `map_zoom_patch`
restyle an existing map with a Dash `Patch` instead of rebuilding every
polygon whenever the selection or the zoom level changes.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from dash import Patch
from plotly.colors import get_colorscale, sample_colorscale

from country_geometry import CountryGeometry, arc_path, label_visible
from dashboard_config import (
    ACCENT, ACCENT_ALT, ACCENT_WARM, BORDER, COLOR_SCALE, COUNTRY_LINE, FONT_FAMILY, HILITE,
    MAP_HEIGHT, MAP_WIDTH, NO_DATA, TEXT, TEXT_DIM, DatasetProfile,
)
from selection_state import SelectionState, ViewTransform
from view_data import FlowGraph, HistogramBin

BASE_LINE_WIDTH = 0.5
SELECTED_LINE_WIDTH = 2.5
DIMMED_OPACITY = 0.35
LINKED_OPACITY = 0.75


def _base_layout(fig: go.Figure, title: str = "") -> go.Figure:
    fig.update_layout(
        title=dict(text=title, font=dict(size=14, color=TEXT)),
        margin=dict(l=10, r=10, t=40 if title else 10, b=10),
        paper_bgcolor="rgba(0,0,0,0)", plot_bgcolor="rgba(0,0,0,0)",
        font=dict(family=FONT_FAMILY, color=TEXT),
    )
    fig.update_xaxes(gridcolor=BORDER, zeroline=False)
    fig.update_yaxes(gridcolor=BORDER, zeroline=False)
    return fig


def empty_figure(message: str = "No records for this selection", title: str = "") -> go.Figure:
    fig = _base_layout(go.Figure(), title)
    fig.add_annotation(text=message, showarrow=False, xref="paper", yref="paper", x=0.5, y=0.5,
                       font=dict(color=TEXT_DIM, size=13))
    fig.update_xaxes(visible=False)
    fig.update_yaxes(visible=False)
    return fig


# -----------------------------
# MAP
# -----------------------------
def _polygon_xy(polygons) -> tuple:
    """Flatten every ring into one x/y list, rings separated by None."""
    xs: List[Optional[float]] = []
    ys: List[Optional[float]] = []
    for poly in polygons:
        for ring in [poly.exterior, *poly.interiors]:
            coords = np.asarray(ring.coords)
            if not len(coords):
                continue
            xs.extend(coords[:, 0].tolist() + [None])
            ys.extend(coords[:, 1].tolist() + [None])
    return xs, ys


def fill_colors(geometries: Sequence[CountryGeometry], stats: Mapping[int, float]) -> List[str]:
    """Colour per country from its statistic; countries without one are grey."""
    values = [v for v in stats.values() if v is not None and np.isfinite(v)]
    if not values:
        return [NO_DATA] * len(geometries)
    lo, hi = min(values), max(values)
    scale = get_colorscale(COLOR_SCALE)
    colors = []
    for g in geometries:
        value = stats.get(g.id) if g.id is not None else None
        if value is None or not np.isfinite(value):
            colors.append(NO_DATA)
            continue
        t = 0.5 if hi == lo else (value - lo) / (hi - lo)
        colors.append(sample_colorscale(scale, [t])[0])
    return colors


def _label_texts(geometries: Sequence[CountryGeometry], state: Optional[SelectionState],
                 transform: ViewTransform) -> List[str]:
    selected = state.selected_country.id if state and state.selected_country else None
    return [
        g.name if (g.has_anchor and g.id == selected) or label_visible(g, transform.k) else ""
        for g in geometries
    ]


def _arc_xy(geometries: Sequence[CountryGeometry], state: Optional[SelectionState],
            links: Mapping[int, Mapping[int, int]]) -> tuple:
    xs: List[Optional[float]] = []
    ys: List[Optional[float]] = []
    if not state or not state.selected_country:
        return xs, ys
    by_id = {g.id: g for g in geometries if g.id is not None}
    target = by_id.get(state.selected_country.id)
    if target is None or not target.has_anchor:
        return xs, ys
    for home_id in links.get(target.id, {}):
        home = by_id.get(home_id)
        # a home equal to the target has no arc to draw
        if home is None or home.id == target.id or not home.has_anchor:
            continue
        ax, ay = arc_path(home.centroid, target.centroid)
        xs.extend(ax.tolist() + [None])
        ys.extend(ay.tolist() + [None])
    return xs, ys


def _country_styles(geometries: Sequence[CountryGeometry], state: Optional[SelectionState],
                    links: Mapping[int, Mapping[int, int]]) -> List[dict]:
    if not state or not state.selected_country:
        return [{"opacity": 1.0, "width": BASE_LINE_WIDTH, "color": COUNTRY_LINE} for _ in geometries]
    selected = state.selected_country.id
    linked = set(links.get(selected, {}))
    styles = []
    for g in geometries:
        if g.id == selected:
            styles.append({"opacity": 1.0, "width": SELECTED_LINE_WIDTH, "color": HILITE})
        elif g.id in linked:
            styles.append({"opacity": LINKED_OPACITY, "width": BASE_LINE_WIDTH, "color": ACCENT_WARM})
        else:
            styles.append({"opacity": DIMMED_OPACITY, "width": BASE_LINE_WIDTH, "color": COUNTRY_LINE})
    return styles


def _hover_text(geometry: CountryGeometry, stats: Mapping[int, float], measure_label: str) -> str:
    value = stats.get(geometry.id) if geometry.id is not None else None
    if value is None:
        return f"<b>{geometry.name}</b><br>No data"
    return f"<b>{geometry.name}</b><br>{measure_label}: {value:,.0f}"


def label_trace_index(geometries: Sequence[CountryGeometry]) -> int:
    return len(geometries)


def arc_trace_index(geometries: Sequence[CountryGeometry]) -> int:
    return len(geometries) + 1


def scale_trace_index(geometries: Sequence[CountryGeometry]) -> int:
    return len(geometries) + 2


def map_figure(geometries: Sequence[CountryGeometry], stats: Mapping[int, float],
               state: Optional[SelectionState] = None, transform: Optional[ViewTransform] = None,
               links: Optional[Mapping[int, Mapping[int, int]]] = None,
               measure_label: str = "Median", width: float = MAP_WIDTH, height: float = MAP_HEIGHT) -> go.Figure:
    transform = transform or ViewTransform.identity(width, height)
    links = links or {}
    colors = fill_colors(geometries, stats)
    styles = _country_styles(geometries, state, links)

    fig = go.Figure()
    for g, color, style in zip(geometries, colors, styles):
        xs, ys = _polygon_xy(g.polygons)
        hover = _hover_text(g, stats, measure_label)
        fig.add_trace(go.Scatter(
            x=xs, y=ys, mode="lines", fill="toself", fillcolor=color,
            line=dict(color=style["color"], width=style["width"]), opacity=style["opacity"],
            name=g.name, text=hover, hoverinfo="text", hoveron="points+fills",
            customdata=[g.id] * len(xs), showlegend=False,
        ))

    fig.add_trace(go.Scatter(
        x=[g.centroid[0] if g.has_anchor else None for g in geometries],
        y=[g.centroid[1] if g.has_anchor else None for g in geometries],
        mode="text", text=_label_texts(geometries, state, transform),
        textfont=dict(size=10, color=TEXT), hoverinfo="skip", showlegend=False, name="labels",
    ))
    arc_x, arc_y = _arc_xy(geometries, state, links)
    fig.add_trace(go.Scatter(
        x=arc_x, y=arc_y, mode="lines", line=dict(color=ACCENT_WARM, width=1.5),
        hoverinfo="skip", showlegend=False, name="arcs",
    ))

    values = [v for v in stats.values() if v is not None]
    fig.add_trace(go.Scatter(
        x=[None], y=[None], mode="markers", hoverinfo="skip", showlegend=False, name="scale",
        marker=dict(colorscale=COLOR_SCALE, showscale=bool(values),
                    cmin=min(values) if values else 0, cmax=max(values) if values else 1,
                    colorbar=dict(title=dict(text=measure_label, font=dict(color=TEXT)), thickness=12)),
    ))

    _base_layout(fig)
    fig.update_layout(
        margin=dict(l=0, r=0, t=0, b=0), dragmode="pan", uirevision="map",
        hoverlabel=dict(bgcolor="#1a1c22", font=dict(color=TEXT)),
    )
    fig.update_xaxes(visible=False, range=list(transform.x_range), constrain="domain")
    # y grows downwards on screen
    fig.update_yaxes(visible=False, range=[transform.y_range[1], transform.y_range[0]],
                     scaleanchor="x", scaleratio=1, constrain="domain")
    return fig


def map_selection_patch(geometries: Sequence[CountryGeometry], state: SelectionState,
                        links: Mapping[int, Mapping[int, int]], transform: ViewTransform,
                        stats: Optional[Mapping[int, float]] = None, measure_label: str = "Median") -> Patch:
    """Restyle an existing map for a new selection without touching the polygons."""
    patch = Patch()
    if stats is not None:
        for i, (g, color) in enumerate(zip(geometries, fill_colors(geometries, stats))):
            patch["data"][i]["fillcolor"] = color
            patch["data"][i]["text"] = _hover_text(g, stats, measure_label)
        values = [v for v in stats.values() if v is not None]
        if values:
            patch["data"][scale_trace_index(geometries)]["marker"]["cmin"] = min(values)
            patch["data"][scale_trace_index(geometries)]["marker"]["cmax"] = max(values)
    for i, style in enumerate(_country_styles(geometries, state, links)):
        patch["data"][i]["opacity"] = style["opacity"]
        patch["data"][i]["line"]["width"] = style["width"]
        patch["data"][i]["line"]["color"] = style["color"]
    patch["data"][label_trace_index(geometries)]["text"] = _label_texts(geometries, state, transform)
    arc_x, arc_y = _arc_xy(geometries, state, links)
    patch["data"][arc_trace_index(geometries)]["x"] = arc_x
    patch["data"][arc_trace_index(geometries)]["y"] = arc_y
    return patch


def map_zoom_patch(geometries: Sequence[CountryGeometry], transform: ViewTransform,
                   state: Optional[SelectionState] = None) -> Patch:
    patch = Patch()
    patch["data"][label_trace_index(geometries)]["text"] = _label_texts(geometries, state, transform)
    return patch


# -----------------------------
# CHARTS
# -----------------------------
def histogram_figure(bins: Sequence[HistogramBin], profile: DatasetProfile) -> go.Figure:
    title = f"{profile.measure_label} distribution"
    if not bins:
        return empty_figure(title=title)
    fig = go.Figure(go.Bar(
        x=[(b.range_start + b.range_end) / 2 for b in bins],
        y=[b.count for b in bins],
        width=[b.range_end - b.range_start for b in bins],
        customdata=[[b.range_start, b.range_end] for b in bins],
        marker=dict(color=ACCENT, line=dict(color="#0a0b0d", width=1)),
        hovertemplate="%{customdata[0]:,.0f} - %{customdata[1]:,.0f}<br>%{y} records<extra></extra>",
    ))
    _base_layout(fig, title)
    fig.update_xaxes(title_text=profile.measure_label)
    fig.update_yaxes(title_text="Records")
    return fig


def flow_figure(flow: FlowGraph, profile: DatasetProfile) -> go.Figure:
    title = " → ".join(profile.stage_names)
    if flow.is_empty:
        return empty_figure(title=title)
    fig = go.Figure(go.Sankey(
        arrangement="snap",
        node=dict(label=flow.nodes, pad=14, thickness=14, color=ACCENT_ALT,
                  line=dict(color=BORDER, width=0.5)),
        link=dict(source=[link.source for link in flow.links], target=[link.target for link in flow.links],
                  value=[link.value for link in flow.links], color="rgba(16,185,129,0.25)"),
    ))
    return _base_layout(fig, title)


def line_figure(yearly: pd.DataFrame, state: Optional[SelectionState], profile: DatasetProfile) -> go.Figure:
    column = "median" if profile.year_stat == "median" else "records"
    label = f"Median {profile.measure_label.lower()}" if column == "median" else "Records"
    title = f"{label} per year"
    if yearly is None or yearly.empty:
        return empty_figure(title=title)
    selected = state.selected_year if state else None
    is_sel = yearly["year"] == selected
    fig = go.Figure(go.Scatter(
        x=yearly["year"], y=yearly[column], mode="lines+markers",
        line=dict(color=ACCENT, width=2),
        marker=dict(size=np.where(is_sel, 14, 8).tolist(),
                    color=np.where(is_sel, HILITE, ACCENT).tolist()),
        customdata=yearly["year"], hovertemplate="%{x}: %{y:,.0f}<extra></extra>",
    ))
    _base_layout(fig, title)
    fig.update_xaxes(title_text="Year", dtick=1)
    fig.update_yaxes(title_text=label)
    return fig


def bar_figure(categories: pd.DataFrame, profile: DatasetProfile) -> go.Figure:
    title = f"Top {profile.category_column.replace('_', ' ').lower()}"
    if categories is None or categories.empty:
        return empty_figure(title=title)
    fig = go.Figure(go.Bar(
        x=categories["records"], y=categories["category"], orientation="h",
        marker_color=ACCENT_ALT, hovertemplate="%{y}: %{x}<extra></extra>",
    ))
    _base_layout(fig, title)
    fig.update_layout(yaxis=dict(autorange="reversed"))
    fig.update_xaxes(title_text="Records")
    return fig


def scatter_figure(points: pd.DataFrame, state: Optional[SelectionState], profile: DatasetProfile) -> go.Figure:
    title = f"Records vs median {profile.measure_label.lower()} per country"
    if points is None or points.empty:
        return empty_figure(title=title)
    selected = state.selected_country.id if state and state.selected_country else None
    is_sel = points["country_id"] == selected
    fig = go.Figure(go.Scatter(
        x=points["records"], y=points["median"], mode="markers",
        marker=dict(size=np.where(is_sel, 14, 9).tolist(), opacity=0.85,
                    color=np.where(is_sel, HILITE, ACCENT).tolist(),
                    line=dict(color=np.where(is_sel, TEXT, "rgba(0,0,0,0)").tolist(),
                              width=np.where(is_sel, 2, 0).tolist())),
        hovertext=points["name"], customdata=points["country_id"], hoverinfo="text+x+y",
    ))
    _base_layout(fig, title)
    fig.update_xaxes(title_text="Records", type="log")
    fig.update_yaxes(title_text=f"Median {profile.measure_label.lower()}")
    return fig


# -----------------------------
# CLICK PARSING
# -----------------------------
def _first_point(click_data: Optional[dict]) -> Optional[dict]:
    points = (click_data or {}).get("points") or []
    return points[0] if points else None


def clicked_country_id(click_data: Optional[dict], trace_ids: Optional[Sequence[Optional[int]]] = None) -> Optional[int]:
    """Country id of a map or scatter click; map fills may only report their trace number."""
    point = _first_point(click_data)
    if point is None:
        return None
    cd = point.get("customdata")
    if isinstance(cd, list):
        cd = cd[0] if cd else None
    if cd is not None:
        try:
            return int(cd)
        except (TypeError, ValueError):
            return None
    curve = point.get("curveNumber")
    if trace_ids is not None and curve is not None and 0 <= curve < len(trace_ids):
        return trace_ids[curve]
    return None


def clicked_year(click_data: Optional[dict]) -> Optional[int]:
    point = _first_point(click_data)
    if point is None:
        return None
    value = point.get("customdata", point.get("x"))
    if isinstance(value, list):
        value = value[0] if value else None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def stats_title(state: SelectionState, stats: Dict[int, float], profile: DatasetProfile) -> str:
    """'Global' or '<country>: median <measure> <value>'."""
    if state.selected_country is None:
        return state.describe()
    value = stats.get(state.selected_country.id)
    if value is None:
        return f"{state.describe()}: no records"
    return f"{state.describe()}: median {profile.measure_label.lower()} {value:,.0f}"
