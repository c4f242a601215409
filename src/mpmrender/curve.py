# src/mpmrender/curve.py
"""
Kubische Bézier-Übergänge für alle kontinuierlichen Maps (dynamics, tempo, movement).

Die Kurve ist S-förmig (P0..P3): _/̅
y-Koordinaten fest (0, 0, 1, 1), x-Koordinaten P0.x=0, P3.x=1, die inneren
x1/x2 leiten sich aus curvature (0..1) und protraction (-1..1) ab.
"""
from __future__ import annotations
import bisect
import math
from typing import Callable, List, Optional, Tuple

Point = Tuple[float, float]   # (date, value)

MAX_BISECTION_STEPS = 64
MIN_T_GAP = 1e-12

def clamp_shape(curvature: Optional[float], protraction: Optional[float]) -> Tuple[float, float]:
    c = 0.0 if curvature is None else curvature
    p = 0.0 if protraction is None else protraction
    if not math.isnan(c): c = max(0.0, min(1.0, c))
    if not math.isnan(p): p = max(-1.0, min(1.0, p))
    return c, p

def inner_control_points(curvature: float, protraction: float) -> Tuple[float, float]:
    """x-Positionen der inneren Kontrollpunkte aus (curvature, protraction)."""
    c, p = curvature, protraction
    if p == 0.0:
        return c, 1.0 - c
    sign = abs(p) / p
    x1 = c + ((abs(p) + p) / (2.0 * p) - sign * c) * p
    x2 = 1.0 - c + ((p - abs(p)) / (2.0 * p) + sign * c) * p
    return x1, x2

def smoothstep(t: float) -> float:
    """y(t) = (3 - 2t)·t²"""
    return (3.0 - 2.0 * t) * t * t

def adaptive_sample(point: Callable[[float], Point],
                    tolerance: float,
                    measure: Optional[Callable[[float], float]] = None) -> List[Point]:
    """
    Tiefensuche über t: zwischen zwei benachbarten Stützstellen wird so lange
    die t-Mitte eingefügt, bis sich die (ggf. per measure transformierten)
    Werte um höchstens tolerance unterscheiden.
    """
    m = measure or (lambda v: v)
    ts = [0.0, 1.0]
    series = [point(0.0), point(1.0)]
    i = 0
    while i < len(ts) - 1:
        while (abs(m(series[i + 1][1]) - m(series[i][1])) > tolerance
               and ts[i + 1] - ts[i] > MIN_T_GAP):
            t = (ts[i] + ts[i + 1]) * 0.5
            ts.insert(i + 1, t)
            series.insert(i + 1, point(t))
        i += 1
    return series

class BezierSegment:
    """Ein Übergang (start_date, start_value) -> (end_date, end_value)."""

    def __init__(self, start_date: float, end_date: float,
                 start_value: float, end_value: float,
                 curvature: Optional[float] = 0.0, protraction: Optional[float] = 0.0):
        self.start_date = float(start_date)
        self.end_date = float(end_date)
        self.start_value = float(start_value)
        self.end_value = float(end_value)
        self.curvature, self.protraction = clamp_shape(curvature, protraction)
        self.x1, self.x2 = (0.0, 1.0)
        if not self.has_nan_shape:
            self.x1, self.x2 = inner_control_points(self.curvature, self.protraction)

    @property
    def length(self) -> float:
        return self.end_date - self.start_date

    @property
    def has_nan_shape(self) -> bool:
        return math.isnan(self.curvature) or math.isnan(self.protraction)

    @property
    def is_degenerate(self) -> bool:
        s = self.length
        return (not math.isfinite(s)) or s <= 0.0 or self.has_nan_shape

    def _x(self, t: float) -> float:
        # x(t) in [0,1]; Bernstein-Form mit P0.x=0, P3.x=1
        u = 3.0 * self.x1 - 3.0 * self.x2 + 1.0
        v = -6.0 * self.x1 + 3.0 * self.x2
        w = 3.0 * self.x1
        return ((u * t + v) * t + w) * t

    def t_for_date(self, date: float) -> float:
        """Binärsuche nach t, ganzzahlig genau auf der Zeitachse (Pulse)."""
        if date <= self.start_date:
            return 0.0
        if date >= self.end_date:
            return 1.0
        s = self.length
        d = date - self.start_date
        t = 0.5
        diff = self._x(t) * s - d
        tt = 0.25
        steps = 0
        while abs(diff) >= 1.0 and steps < MAX_BISECTION_STEPS:
            if diff > 0.0:      # t zu groß
                t -= tt
            else:               # t zu klein
                t += tt
            diff = self._x(t) * s - d
            tt *= 0.5
            steps += 1
        return t

    def value_at(self, date: float) -> float:
        if self.is_degenerate or date <= self.start_date:
            return self.start_value
        if date >= self.end_date:
            return self.end_value
        t = self.t_for_date(date)
        return self.start_value + smoothstep(t) * (self.end_value - self.start_value)

    def point_at(self, t: float) -> Point:
        date = self._x(t) * self.length + self.start_date
        return date, self.start_value + smoothstep(t) * (self.end_value - self.start_value)

    def sample(self, tolerance: float,
               measure: Optional[Callable[[float], float]] = None) -> List[Point]:
        """Adaptive Abtastung; degenerierte Segmente liefern nur den Startwert."""
        if self.is_degenerate:
            return [(self.start_date, self.start_value)]
        return adaptive_sample(self.point_at, tolerance, measure)

    def __repr__(self):
        return (f"BezierSegment({self.start_date:g}->{self.end_date:g}, "
                f"{self.start_value:g}->{self.end_value:g}, c={self.curvature:g}, p={self.protraction:g})")

def chain(points, on_degenerate: Optional[Callable[[BezierSegment], None]] = None) -> List[BezierSegment]:
    """
    points: [(date, start_value, transition_to|None, curvature, protraction), ...] nach date sortiert.
    Jedes Segment endet am Datum des nächsten Punkts (zuletzt +inf) und läuft
    zum eigenen transition.to, nicht zum Startwert des Nachfolgers.
    """
    out: List[BezierSegment] = []
    for k, (date, v0, v1, c, p) in enumerate(points):
        end = points[k + 1][0] if k + 1 < len(points) else math.inf
        if v1 is None:
            out.append(BezierSegment(date, end, v0, v0))
            continue
        seg = BezierSegment(date, end, v0, v1, c, p)
        # das letzte Segment ist offen und bleibt konstant
        if on_degenerate is not None and math.isfinite(end) and seg.is_degenerate:
            on_degenerate(seg)
        out.append(seg)
    return out

class PiecewiseCurve:
    """Stückweise Funktion über Segmente; vor dem ersten Segment undefiniert (None)."""

    def __init__(self, segments: List[BezierSegment], meta: Optional[list] = None):
        self.segments = segments
        self.meta = meta if meta is not None else [None] * len(segments)
        self._starts = [s.start_date for s in segments]

    def __len__(self):
        return len(self.segments)

    def index_at(self, date: float) -> int:
        return bisect.bisect_right(self._starts, date) - 1

    def value_at(self, date: float) -> Optional[float]:
        i = self.index_at(date)
        if i < 0:
            return None
        return self.segments[i].value_at(date)
