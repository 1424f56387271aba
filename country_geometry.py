"""
Country geometry precomputation.

The world topology gives each country as a polygon or a multi-polygon. For
labels and relationship arcs the map needs one anchor point per country, so
for every shape we keep its dominant polygon (the part whose outer ring has
the largest planar area - "the main landmass") and the centroid of that
polygon in projected screen coordinates.

Shapes are shapely geometries; projection goes through pyproj (EPSG:4326 to
EPSG:3857) and is then scaled into the canvas. Everything here runs once per
load; zooming only changes which labels are visible (`label_visible`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from pyproj import Transformer
from shapely import affinity
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Point, Polygon, shape
from shapely.geometry.base import BaseGeometry

from country_codes import parse_country_id
from dashboard_config import (
    EXCLUDED_TERRITORIES, FALLBACK_CENTROID, LABEL_MIN_SCREEN_AREA, MAX_MERCATOR_LAT,
)

logger = logging.getLogger(__name__)

_TO_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@dataclass(frozen=True)
class CountryShape:
    id: Optional[int]
    raw_id: str
    name: str
    geometry: Optional[BaseGeometry] = field(default=None, repr=False)     # lon/lat

    @property
    def polygons(self) -> List[Polygon]:
        return polygon_parts(self.geometry)


@dataclass(frozen=True)
class CountryGeometry:
    id: Optional[int]
    name: str
    geometry: Optional[BaseGeometry] = field(default=None, repr=False)     # projected
    dominant_polygon: Optional[Polygon] = field(default=None, repr=False)  # largest part, projected
    centroid: Tuple[float, float] = FALLBACK_CENTROID
    screen_area: float = 0.0

    @property
    def polygons(self) -> List[Polygon]:
        return polygon_parts(self.geometry)

    @property
    def has_anchor(self) -> bool:
        return tuple(self.centroid) != tuple(FALLBACK_CENTROID)


def polygon_parts(geometry: Optional[BaseGeometry]) -> List[Polygon]:
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, MultiPolygon):
        return list(geometry.geoms)
    return []


# -----------------------------
# TOPOLOGY DECODING
# -----------------------------
def _decode_arcs(topology: dict) -> List[np.ndarray]:
    """Absolute lon/lat arcs; quantized topologies store deltas."""
    transform = topology.get("transform")
    arcs = []
    for arc in topology.get("arcs", []):
        pts = np.asarray(arc, dtype=float).reshape(-1, 2) if len(arc) else np.empty((0, 2))
        if transform and len(pts):
            pts = np.cumsum(pts, axis=0)
            pts = pts * np.asarray(transform["scale"], dtype=float) + np.asarray(transform["translate"], dtype=float)
        arcs.append(pts)
    return arcs


def _stitch_ring(arc_indices: Sequence[int], arcs: List[np.ndarray]) -> List[List[float]]:
    parts = []
    for i, idx in enumerate(arc_indices):
        arc = arcs[~idx][::-1] if idx < 0 else arcs[idx]
        # consecutive arcs share their joining point
        parts.append(arc if i == 0 else arc[1:])
    return np.vstack(parts).tolist() if parts else []


def _as_geojson(geometry: dict, arcs: List[np.ndarray]) -> Optional[dict]:
    gtype = geometry.get("type")
    refs = geometry.get("arcs") or []
    if gtype == "Polygon":
        return {"type": "Polygon", "coordinates": [_stitch_ring(ring, arcs) for ring in refs]}
    if gtype == "MultiPolygon":
        return {"type": "MultiPolygon",
                "coordinates": [[_stitch_ring(ring, arcs) for ring in poly] for poly in refs]}
    return None


def _to_shapely(geojson: Optional[dict]) -> Optional[BaseGeometry]:
    if not geojson or geojson.get("type") not in ("Polygon", "MultiPolygon"):
        return None
    if not geojson.get("coordinates"):
        return None
    try:
        return shape(geojson)
    except (ValueError, TypeError, GEOSException) as exc:
        logger.warning("Unreadable %s geometry skipped: %s", geojson.get("type"), exc)
        return None


def topology_to_shapes(topology: dict, object_name: str = "countries") -> List[CountryShape]:
    """Decode a TopoJSON topology (or a GeoJSON FeatureCollection) into shapes."""
    if topology.get("type") == "Topology":
        try:
            collection = topology["objects"][object_name]
        except KeyError:
            raise KeyError(f"Topology has no object '{object_name}'. "
                           f"Available={list(topology.get('objects', {}))}") from None
        arcs = _decode_arcs(topology)
        features = [(g, _as_geojson(g, arcs)) for g in collection.get("geometries", [])]
    elif topology.get("type") == "FeatureCollection":
        features = [(f, f.get("geometry")) for f in topology.get("features", [])]
    else:
        raise ValueError(f"Unsupported geometry document type: {topology.get('type')!r}")

    shapes = []
    for item, geojson in features:
        raw_id = "" if item.get("id") is None else str(item.get("id"))
        props = item.get("properties") or {}
        shapes.append(CountryShape(
            id=parse_country_id(raw_id) if raw_id else None,
            raw_id=raw_id,
            name=str(props.get("name", raw_id)),
            geometry=_to_shapely(geojson),
        ))
    return shapes


def exclude_territories(shapes: Iterable[CountryShape], excluded: dict = EXCLUDED_TERRITORIES) -> List[CountryShape]:
    ids = set(excluded.get("ids", ()))
    codes = {c.upper() for c in excluded.get("alpha3", ())}
    names = set(excluded.get("names", ()))
    return [
        s for s in shapes
        if s.id not in ids and s.raw_id.upper() not in codes and s.name not in names
    ]


# -----------------------------
# PLANAR GEOMETRY
# -----------------------------
def ring_area(ring) -> float:
    """Planar area enclosed by a ring, orientation independent."""
    try:
        area = Polygon(ring).area
    except (ValueError, TypeError, GEOSException):
        return 0.0
    return float(area) if np.isfinite(area) else 0.0


def dominant_polygon(polygons: Sequence[Polygon]) -> Optional[Polygon]:
    """
    The polygon whose outer ring has the largest area.

    Equal areas go to the part whose outer ring starts furthest left (then
    lowest), so the choice does not depend on the order of the parts.
    """
    parts = [p for p in polygons if p is not None and not p.is_empty]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]

    def rank(poly: Polygon):
        minx, miny, _, _ = poly.exterior.bounds
        return (-ring_area(poly.exterior), minx, miny)

    return min(parts, key=rank)


def polygon_screen_area(polygon: Optional[Polygon]) -> float:
    """Area of a polygon with its holes removed."""
    if polygon is None or polygon.is_empty:
        return 0.0
    area = polygon.area
    return float(area) if np.isfinite(area) and area > 0 else 0.0


def polygon_centroid(polygon: Optional[Polygon]) -> Tuple[float, float]:
    """Area-weighted centroid; degenerate or non-finite polygons give the fallback."""
    if polygon_screen_area(polygon) == 0.0:
        return FALLBACK_CENTROID
    c = polygon.centroid
    if c.is_empty or not (np.isfinite(c.x) and np.isfinite(c.y)):
        return FALLBACK_CENTROID
    return (float(c.x), float(c.y))


# -----------------------------
# PROJECTION
# -----------------------------
def _web_mercator(coords: np.ndarray) -> np.ndarray:
    lat = np.clip(coords[:, 1], -MAX_MERCATOR_LAT, MAX_MERCATOR_LAT)
    x, y = _TO_MERCATOR.transform(coords[:, 0], lat)
    return np.column_stack([x, y])


class MercatorProjection:
    """Web Mercator scaled and translated into a width x height canvas (y down)."""

    def __init__(self, scale: float = 1.0, translate: Tuple[float, float] = (0.0, 0.0)):
        self.scale = float(scale)
        self.translate = (float(translate[0]), float(translate[1]))

    def __call__(self, geometry: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
        if geometry is None or geometry.is_empty:
            return geometry
        merc = shapely.transform(geometry, _web_mercator)
        tx, ty = self.translate
        return affinity.affine_transform(merc, [self.scale, 0.0, 0.0, -self.scale, tx, ty])

    def point(self, lon: float, lat: float) -> Tuple[float, float]:
        p = self(Point(lon, lat))
        return (p.x, p.y)

    @classmethod
    def fit_size(cls, width: float, height: float, shapes: Iterable[CountryShape]) -> "MercatorProjection":
        geoms = [shapely.transform(s.geometry, _web_mercator)
                 for s in shapes if s.geometry is not None and not s.geometry.is_empty]
        bounds = np.array([g.bounds for g in geoms], dtype=float).reshape(-1, 4)
        bounds = bounds[np.isfinite(bounds).all(axis=1)]
        if not len(bounds):
            return cls(scale=1.0, translate=(width / 2, height / 2))
        x0, y0 = bounds[:, 0].min(), bounds[:, 1].min()
        x1, y1 = bounds[:, 2].max(), bounds[:, 3].max()
        dx, dy = max(x1 - x0, 1e-12), max(y1 - y0, 1e-12)
        k = min(width / dx, height / dy)
        return cls(scale=k, translate=((width - k * (x0 + x1)) / 2, (height + k * (y0 + y1)) / 2))


# -----------------------------
# PER-COUNTRY PRECOMPUTATION
# -----------------------------
def build_country_geometries(shapes: Iterable[CountryShape], projection: MercatorProjection) -> List[CountryGeometry]:
    """One entry per shape, in topology order; `geometry_index` keys them by id."""
    geometries = []
    degenerate = []
    for shape_ in shapes:
        projected = projection(shape_.geometry)
        dom = dominant_polygon(polygon_parts(projected))
        centroid = polygon_centroid(dom)
        if centroid == FALLBACK_CENTROID:
            degenerate.append(shape_.name)
        geometries.append(CountryGeometry(
            id=shape_.id,
            name=shape_.name,
            geometry=projected,
            dominant_polygon=dom,
            centroid=centroid,
            screen_area=polygon_screen_area(dom),
        ))
    if degenerate:
        logger.warning("%d shapes have degenerate geometry, labels hidden: %s",
                       len(degenerate), ", ".join(degenerate[:10]))
    return geometries


def geometry_index(geometries: Iterable[CountryGeometry]) -> Dict[int, CountryGeometry]:
    return {g.id: g for g in geometries if g.id is not None}


def label_visible(geometry: CountryGeometry, k: float = 1.0,
                  threshold: float = LABEL_MIN_SCREEN_AREA) -> bool:
    """A label is shown once its landmass is large enough on screen at zoom `k`."""
    return geometry.has_anchor and geometry.screen_area * k * k > threshold


def arc_path(start: Tuple[float, float], end: Tuple[float, float],
             bend: float = 0.25, samples: int = 24) -> Tuple[np.ndarray, np.ndarray]:
    """Quadratic curve from start to end, bowed to the left of the direction of travel."""
    p0, p2 = np.asarray(start, dtype=float), np.asarray(end, dtype=float)
    d = p2 - p0
    normal = np.array([-d[1], d[0]])
    p1 = (p0 + p2) / 2 + bend * normal
    t = np.linspace(0.0, 1.0, samples)[:, None]
    pts = (1 - t) ** 2 * p0 + 2 * (1 - t) * t * p1 + t ** 2 * p2
    return pts[:, 0], pts[:, 1]
