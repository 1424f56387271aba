"""
Selection state, map view transform and redraw dispatch.

There is exactly one place where the selection changes: `SelectionState`.
Clicks on any view end up in `select_country` / `select_year`, and every
chart is then brought up to date through one `RenderDispatcher.dispatch`
call. Dash keeps nothing between callbacks, so both the selection and the
map transform round-trip through `dcc.Store` as plain dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from country_codes import CountryCodes, CountryIdentity
from dashboard_config import MAP_HEIGHT, MAP_WIDTH, ZOOM_EXTENT

logger = logging.getLogger(__name__)


def _parse_year(value) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


# -----------------------------
# SELECTION
# -----------------------------
class SelectionState:
    """Currently selected country and year; None means "all"."""

    def __init__(self, country: Optional[CountryIdentity] = None, year: Optional[int] = None):
        self.selected_country = country
        self.selected_year = year

    def select_country(self, identity: Optional[CountryIdentity]) -> Optional[CountryIdentity]:
        """Clicking the selected country again clears it, any other country replaces it."""
        previous = self.selected_country
        if identity is None or (previous is not None and previous.id == identity.id):
            self.selected_country = None
        else:
            self.selected_country = identity
        logger.debug("country selection %s -> %s",
                     previous.alpha3 if previous else "Global",
                     self.selected_country.alpha3 if self.selected_country else "Global")
        return self.selected_country

    def select_year(self, year) -> Optional[int]:
        previous = self.selected_year
        year = _parse_year(year)
        if year is None or year == previous:
            self.selected_year = None
        else:
            self.selected_year = year
        logger.debug("year selection %s -> %s", previous, self.selected_year)
        return self.selected_year

    def clear(self) -> None:
        self.selected_country = None
        self.selected_year = None
        logger.debug("selection cleared")

    @property
    def is_global(self) -> bool:
        return self.selected_country is None and self.selected_year is None

    def describe(self) -> str:
        parts = [self.selected_country.name if self.selected_country else "Global"]
        if self.selected_year is not None:
            parts.append(str(self.selected_year))
        return " - ".join(parts)

    def to_store(self) -> Dict[str, Optional[int]]:
        return {
            "country_id": self.selected_country.id if self.selected_country else None,
            "year": self.selected_year,
        }

    @classmethod
    def from_store(cls, data: Optional[dict], codes: CountryCodes) -> "SelectionState":
        data = data or {}
        country = None
        if data.get("country_id") is not None:
            country = codes.identity(data["country_id"])
            if country is None:
                logger.warning("Stored country id %s is not in the reference table, selection dropped",
                               data["country_id"])
        return cls(country=country, year=_parse_year(data.get("year")))

    def __repr__(self) -> str:
        return f"SelectionState({self.describe()!r})"


# -----------------------------
# MAP VIEW TRANSFORM
# -----------------------------
def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _axis_range(relayout: dict, axis: str) -> Optional[Tuple[float, float]]:
    if f"{axis}.range[0]" in relayout and f"{axis}.range[1]" in relayout:
        lo, hi = relayout[f"{axis}.range[0]"], relayout[f"{axis}.range[1]"]
    elif isinstance(relayout.get(f"{axis}.range"), (list, tuple)) and len(relayout[f"{axis}.range"]) == 2:
        lo, hi = relayout[f"{axis}.range"]
    else:
        return None
    lo, hi = float(lo), float(hi)
    return (min(lo, hi), max(lo, hi))


def _fit_range(rng: Optional[Tuple[float, float]], fallback: Tuple[float, float],
               span: float, extent: float) -> Tuple[float, float]:
    center = (rng[0] + rng[1]) / 2 if rng else (fallback[0] + fallback[1]) / 2
    center = _clamp(center, span / 2, extent - span / 2)
    return (center - span / 2, center + span / 2)


@dataclass(frozen=True)
class ViewTransform:
    """Zoom factor and visible canvas window of the map (y grows downwards)."""
    k: float = 1.0
    x_range: Tuple[float, float] = (0.0, float(MAP_WIDTH))
    y_range: Tuple[float, float] = (0.0, float(MAP_HEIGHT))

    @classmethod
    def identity(cls, width: float = MAP_WIDTH, height: float = MAP_HEIGHT) -> "ViewTransform":
        return cls(k=1.0, x_range=(0.0, float(width)), y_range=(0.0, float(height)))

    @classmethod
    def from_relayout(cls, relayout: Optional[dict], previous: Optional["ViewTransform"] = None,
                      width: float = MAP_WIDTH, height: float = MAP_HEIGHT,
                      extent: Tuple[float, float] = ZOOM_EXTENT) -> "ViewTransform":
        previous = previous or cls.identity(width, height)
        if not relayout:
            return previous
        if relayout.get("xaxis.autorange") or relayout.get("yaxis.autorange"):
            return cls.identity(width, height)

        x_rng, y_rng = _axis_range(relayout, "xaxis"), _axis_range(relayout, "yaxis")
        if x_rng is None and y_rng is None:
            return previous

        if x_rng is not None and x_rng[1] > x_rng[0]:
            k = width / (x_rng[1] - x_rng[0])
        elif y_rng is not None and y_rng[1] > y_rng[0]:
            k = height / (y_rng[1] - y_rng[0])
        else:
            return previous
        k = _clamp(k, *extent)

        # ranges follow the clamped zoom and may not leave the canvas
        return cls(
            k=k,
            x_range=_fit_range(x_rng, previous.x_range, width / k, width),
            y_range=_fit_range(y_rng, previous.y_range, height / k, height),
        )

    def to_store(self) -> Dict[str, Any]:
        return {"k": self.k, "x_range": list(self.x_range), "y_range": list(self.y_range)}

    @classmethod
    def from_store(cls, data: Optional[dict], width: float = MAP_WIDTH,
                   height: float = MAP_HEIGHT) -> "ViewTransform":
        if not data:
            return cls.identity(width, height)
        return cls(k=float(data.get("k", 1.0)),
                   x_range=tuple(data.get("x_range", (0.0, width))),
                   y_range=tuple(data.get("y_range", (0.0, height))))


# -----------------------------
# REDRAW DISPATCH
# -----------------------------
class RedrawRegistry:
    """Zero-argument redraw callbacks, run in registration order."""

    def __init__(self):
        self._callbacks: List[Tuple[str, Callable[[], Any]]] = []

    def register(self, name: str, callback: Callable[[], Any]) -> Callable[[], Any]:
        if any(existing == name for existing, _ in self._callbacks):
            raise ValueError(f"A redraw callback named '{name}' is already registered")
        self._callbacks.append((name, callback))
        return callback

    def run(self) -> Dict[str, Any]:
        return {name: callback() for name, callback in self._callbacks}

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self._callbacks]

    def __len__(self) -> int:
        return len(self._callbacks)


class RenderDispatcher:
    """
    Brings every view in line with the selection.

    Full views are rebuilt from freshly aggregated data (`draw(views, state)`);
    incremental views are zero-argument callbacks that patch an existing
    figure and read whatever they need from the dispatcher by reference.
    """

    def __init__(self, state: SelectionState, views_fn: Callable[[SelectionState], Any]):
        self.state = state
        self.views_fn = views_fn
        self.views = None
        self._full: Dict[str, Callable[[Any, SelectionState], Any]] = {}
        self.registry = RedrawRegistry()

    def add_full_view(self, name: str, draw: Callable[[Any, SelectionState], Any]) -> None:
        self._full[name] = draw

    def add_incremental_view(self, name: str, patch: Callable[[], Any]) -> None:
        self.registry.register(name, patch)

    def dispatch(self, full: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Rebuild the requested full views (all by default), then run every incremental one."""
        names = list(self._full) if full is None else list(full)
        unknown = [n for n in names if n not in self._full]
        if unknown:
            raise KeyError(f"Unknown view(s) {unknown}. Registered={list(self._full)}")

        results: Dict[str, Any] = {}
        if names or self.views is None:
            self.views = self.views_fn(self.state)
        for name in names:
            results[name] = self._full[name](self.views, self.state)
        results.update(self.registry.run())
        logger.debug("dispatched %s for %r", list(results), self.state)
        return results
