"""
Per-view datasets derived from the record table.

Every function here is pure: it takes the (already filtered) records and
returns a fresh structure, never patching a previous result. `build_views`
applies the current selection once and derives every view from that same
filtered frame, so all charts always describe the same subset of records.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

import numpy as np
import pandas as pd

from country_codes import CountryCodes
from dashboard_config import HISTOGRAM_BINS, TOP_CATEGORIES, DatasetProfile


@dataclass(frozen=True)
class HistogramBin:
    range_start: float
    range_end: float
    count: int


@dataclass(frozen=True)
class FlowLink:
    source: int
    target: int
    value: int


@dataclass(frozen=True)
class FlowGraph:
    nodes: List[str] = field(default_factory=list)
    links: List[FlowLink] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.links


@dataclass
class AggregatedViews:
    records: pd.DataFrame
    histogram: List[HistogramBin]
    flow: FlowGraph
    country_stats: Dict[int, float]
    country_links: Dict[int, Dict[int, int]]
    yearly: pd.DataFrame
    categories: pd.DataFrame
    country_points: pd.DataFrame


# -----------------------------
# FILTERING
# -----------------------------
def filter_records(records: pd.DataFrame, state, by_year: bool = True) -> pd.DataFrame:
    """Restrict the records to the selected country and/or year."""
    mask = pd.Series(True, index=records.index)
    if state is not None and state.selected_country is not None:
        mask &= (records["country_id"] == state.selected_country.id).fillna(False).astype(bool)
    if by_year and state is not None and state.selected_year is not None:
        mask &= (records["year"] == state.selected_year).fillna(False).astype(bool)
    return records[mask]


# -----------------------------
# HISTOGRAM
# -----------------------------
def bin_width(max_value: float, bin_count: int = HISTOGRAM_BINS) -> float:
    return max(float(math.ceil(max_value / bin_count)), 1.0)


def histogram_bins(values: Iterable[float], bin_count: int = HISTOGRAM_BINS) -> List[HistogramBin]:
    """
    Equal-width bins over [0, ceil(max/N) * (N+1)].

    That is N bins plus one over-provisioned final bin. Bins are right-closed,
    (k*w, (k+1)*w], except the first which also holds 0, so the maximum
    always lands inside the first N bins.
    """
    vals = pd.to_numeric(pd.Series(list(values), dtype="object"), errors="coerce").dropna().to_numpy(dtype=float)
    if not len(vals):
        return []
    width = bin_width(max(vals.max(), 0.0), bin_count)
    index = np.clip(np.ceil(vals / width) - 1, 0, bin_count).astype(int)
    counts = np.bincount(index, minlength=bin_count + 1)
    return [
        HistogramBin(range_start=k * width, range_end=(k + 1) * width, count=int(counts[k]))
        for k in range(bin_count + 1)
    ]


# -----------------------------
# FLOW GRAPH
# -----------------------------
def stage_triples(records: pd.DataFrame, profile: DatasetProfile) -> List[Tuple[str, str, str]]:
    if records.empty:
        return []
    return [profile.stage_fn(row) for _, row in records.iterrows()]


def flow_graph(triples: Iterable[Tuple[str, str, str]]) -> FlowGraph:
    """Two-hop chain per record, stage1 -> stage2 -> stage3, weighted by count."""
    nodes: Dict[str, int] = {}
    weights: Counter = Counter()
    order: List[Tuple[int, int]] = []

    def node(label: str) -> int:
        if label not in nodes:
            nodes[label] = len(nodes)
        return nodes[label]

    for triple in triples:
        ids = [node(label) for label in triple]
        for pair in zip(ids, ids[1:]):
            if pair not in weights:
                order.append(pair)
            weights[pair] += 1

    return FlowGraph(
        nodes=list(nodes),
        links=[FlowLink(source=s, target=t, value=weights[(s, t)]) for s, t in order],
    )


# -----------------------------
# PER-COUNTRY
# -----------------------------
def country_medians(records: pd.DataFrame, column: str = "measure") -> Dict[int, float]:
    """Median per resolved country; countries without values are absent, not 0."""
    sub = records[["country_id", column]].dropna()
    if sub.empty:
        return {}
    medians = sub.groupby("country_id")[column].median()
    return {int(cid): float(val) for cid, val in medians.items()}


def country_links(records: pd.DataFrame) -> Dict[int, Dict[int, int]]:
    """Counts keyed target country -> home country."""
    sub = records[["country_id", "home_id"]].dropna()
    links: Dict[int, Dict[int, int]] = {}
    if sub.empty:
        return links
    counts = sub.groupby(["country_id", "home_id"]).size()
    for (target, home), n in counts.items():
        links.setdefault(int(target), {})[int(home)] = int(n)
    return links


def country_points(records: pd.DataFrame, codes: CountryCodes) -> pd.DataFrame:
    cols = ["country_id", "name", "records", "median"]
    sub = records.dropna(subset=["country_id"])
    if sub.empty:
        return pd.DataFrame(columns=cols)
    grouped = sub.groupby("country_id").agg(records=("measure", "size"), median=("measure", "median"))
    grouped = grouped.reset_index()
    grouped["country_id"] = grouped["country_id"].astype(int)
    grouped["name"] = grouped["country_id"].map(lambda cid: codes.id_to_name(cid) or str(cid))
    return grouped[cols]


# -----------------------------
# LINE / BAR
# -----------------------------
def yearly_series(records: pd.DataFrame) -> pd.DataFrame:
    cols = ["year", "records", "median"]
    sub = records.dropna(subset=["year"])
    if sub.empty:
        return pd.DataFrame(columns=cols)
    out = sub.groupby("year").agg(records=("measure", "size"), median=("measure", "median")).reset_index()
    out["year"] = out["year"].astype(int)
    return out.sort_values("year")[cols].reset_index(drop=True)


def category_counts(records: pd.DataFrame, top_n: int = TOP_CATEGORIES) -> pd.DataFrame:
    if records.empty:
        return pd.DataFrame(columns=["category", "records"])
    counts = records["category"].value_counts().head(top_n)
    return counts.rename_axis("category").reset_index(name="records")


# -----------------------------
# ALL VIEWS
# -----------------------------
def build_views(records: pd.DataFrame, state, profile: DatasetProfile, codes: CountryCodes,
                bin_count: int = HISTOGRAM_BINS, top_n: int = TOP_CATEGORIES) -> AggregatedViews:
    """Filter once by the selection, then derive every view from that subset."""
    filtered = filter_records(records, state)
    return AggregatedViews(
        records=filtered,
        histogram=histogram_bins(filtered["measure"], bin_count),
        flow=flow_graph(stage_triples(filtered, profile)),
        country_stats=country_medians(filtered),
        country_links=country_links(filtered),
        # the line chart is where years are picked, so it ignores the year filter
        yearly=yearly_series(filter_records(records, state, by_year=False)),
        categories=category_counts(filtered, top_n),
        country_points=country_points(filtered, codes),
    )

