import itertools

import numpy as np
import pytest
from shapely.geometry import MultiPolygon, Polygon

from country_geometry import (
    CountryGeometry, MercatorProjection, arc_path, build_country_geometries, dominant_polygon,
    exclude_territories, geometry_index, label_visible, polygon_centroid, polygon_screen_area,
    ring_area, topology_to_shapes,
)
from dashboard_config import FALLBACK_CENTROID


def square(x0, y0, size):
    return np.array([[x0, y0], [x0 + size, y0], [x0 + size, y0 + size], [x0, y0 + size], [x0, y0]], dtype=float)


def test_ring_area_is_orientation_independent():
    ring = square(0, 0, 2)
    assert ring_area(ring) == pytest.approx(4.0)
    assert ring_area(ring[::-1]) == pytest.approx(4.0)
    assert ring_area([(0, 0), (1, 1)]) == 0.0


def test_dominant_polygon_invariant_under_reordering_and_reversal():
    polygons = [Polygon(square(0, 0, 1)), Polygon(square(5, 5, 3)), Polygon(square(-4, 2, 2))]
    for order in itertools.permutations(polygons):
        for flips in itertools.product([False, True], repeat=3):
            candidate = [Polygon(p.exterior.coords[::-1]) if flip else p for p, flip in zip(order, flips)]
            best = dominant_polygon(candidate)
            assert best.area == pytest.approx(9.0)
            assert best.bounds == pytest.approx((5, 5, 8, 8))


def test_dominant_polygon_ties_do_not_depend_on_order():
    left, right = Polygon(square(0, 0, 2)), Polygon(square(10, 0, 2))
    assert dominant_polygon([left, right]).bounds == left.bounds
    assert dominant_polygon([right, left]).bounds == left.bounds
    assert dominant_polygon([Polygon(square(0, 0, 2)[::-1]), right]).bounds == left.bounds


def test_dominant_polygon_edge_cases():
    only = Polygon(square(0, 0, 1))
    assert dominant_polygon([only]) is only
    assert dominant_polygon([]) is None


def test_centroid_of_square():
    assert polygon_centroid(Polygon(square(0, 0, 2))) == pytest.approx((1.0, 1.0))
    assert polygon_centroid(Polygon(square(0, 0, 2)[::-1])) == pytest.approx((1.0, 1.0))


def test_centroid_and_area_subtract_holes():
    poly = Polygon(square(0, 0, 4), [square(1, 1, 1)])
    assert polygon_screen_area(poly) == pytest.approx(15.0)
    cx, cy = polygon_centroid(poly)
    assert cx == pytest.approx(30.5 / 15)
    assert cy == pytest.approx(30.5 / 15)


def test_degenerate_geometry_falls_back():
    assert polygon_centroid(None) == FALLBACK_CENTROID
    assert polygon_centroid(Polygon()) == FALLBACK_CENTROID
    assert polygon_centroid(Polygon([(0, 0), (1, 1), (2, 2)])) == FALLBACK_CENTROID
    assert polygon_centroid(Polygon([(np.nan, 0), (1, np.nan), (2, 2)])) == FALLBACK_CENTROID
    assert polygon_screen_area(None) == 0.0


def test_topology_decoding(topology):
    shapes = topology_to_shapes(topology)
    by_id = {s.id: s for s in shapes}
    assert set(by_id) == {840, 124, 10, -99}

    usa = by_id[840]
    assert isinstance(usa.geometry, MultiPolygon)
    assert len(usa.polygons) == 2
    np.testing.assert_allclose(np.asarray(usa.polygons[0].exterior.coords), square(0, 0, 10))

    # Canada is stored on a reversed arc
    canada_ring = np.asarray(by_id[124].polygons[0].exterior.coords)
    np.testing.assert_allclose(canada_ring[0], [-30, 20])
    np.testing.assert_allclose(canada_ring[1], [-30, 30])

    assert by_id[-99].geometry is None
    assert by_id[-99].polygons == []


def test_feature_collection_is_accepted():
    collection = {"type": "FeatureCollection", "features": [
        {"type": "Feature", "id": "276", "properties": {"name": "Germany"},
         "geometry": {"type": "Polygon", "coordinates": [square(5, 47, 8).tolist()]}},
    ]}
    shapes = topology_to_shapes(collection)
    assert shapes[0].id == 276
    assert ring_area(shapes[0].polygons[0].exterior) == pytest.approx(64.0)


def test_topology_errors(topology):
    with pytest.raises(KeyError):
        topology_to_shapes(topology, "land")
    with pytest.raises(ValueError):
        topology_to_shapes({"type": "GeometryCollection"})


def test_antarctica_is_excluded(topology):
    shapes = exclude_territories(topology_to_shapes(topology))
    assert 10 not in {s.id for s in shapes}
    assert len(shapes) == 3


def test_fit_size_keeps_everything_on_canvas(topology):
    shapes = exclude_territories(topology_to_shapes(topology))
    projection = MercatorProjection.fit_size(960, 600, shapes)
    bounds = np.array([projection(s.geometry).bounds for s in shapes if s.geometry is not None])
    assert bounds[:, 0].min() >= -1e-6 and bounds[:, 2].max() <= 960 + 1e-6
    assert bounds[:, 1].min() >= -1e-6 and bounds[:, 3].max() <= 600 + 1e-6


def test_mercator_handles_poles():
    projection = MercatorProjection()
    north, south = projection.point(0.0, 90.0), projection.point(0.0, -90.0)
    assert np.isfinite(north).all() and np.isfinite(south).all()
    # north is up on screen
    assert north[1] < south[1]


def test_build_country_geometries(topology):
    shapes = exclude_territories(topology_to_shapes(topology))
    projection = MercatorProjection.fit_size(960, 600, shapes)
    geometries = geometry_index(build_country_geometries(shapes, projection))

    usa = geometries[840]
    assert usa.has_anchor
    # the 10x10 part is the main landmass, not the 2x2 island
    assert polygon_screen_area(usa.dominant_polygon) == pytest.approx(usa.screen_area)
    assert usa.screen_area > polygon_screen_area(usa.polygons[1])
    cx, cy = usa.centroid
    assert 0 <= cx <= 960 and 0 <= cy <= 600

    assert not geometries[-99].has_anchor
    assert geometries[-99].centroid == FALLBACK_CENTROID


def test_label_visibility_grows_with_zoom():
    geom = CountryGeometry(id=1, name="Small", centroid=(10.0, 10.0), screen_area=1000.0)
    assert not label_visible(geom, k=1.0)
    assert label_visible(geom, k=2.0)

    hidden = CountryGeometry(id=2, name="Broken", screen_area=1e9)
    assert not label_visible(hidden, k=10.0)


def test_arc_path_connects_endpoints_and_bends():
    xs, ys = arc_path((0.0, 0.0), (10.0, 0.0), samples=11)
    assert (xs[0], ys[0]) == pytest.approx((0.0, 0.0))
    assert (xs[-1], ys[-1]) == pytest.approx((10.0, 0.0))
    assert abs(ys[5]) > 0
