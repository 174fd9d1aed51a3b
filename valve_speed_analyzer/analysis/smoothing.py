from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from valve_speed_analyzer.errors import InsufficientData
from valve_speed_analyzer.models.results import BezierSegment, CurvePoint, VoltagePoint


PointLike = Union[VoltagePoint, CurvePoint]


# =====================================================================
#  Catmull-Rom -> cubic Bezier
# =====================================================================

def catmull_rom_bezier(points: Sequence[PointLike], tension: float = 0.5) -> Optional[List[BezierSegment]]:
    """Convert sorted voltage points into Bezier segments through every point.

    Points are sorted by voltage ascending. For the segment ``p1 -> p2`` with
    neighbours ``p0`` and ``p3`` (the segment's own endpoint when no neighbour
    exists)::

        cp1 = p1 + tension * (p2 - p0) / 3
        cp2 = p2 - tension * (p3 - p1) / 3

    Returns
    -------
    list of BezierSegment or None
        ``n - 1`` segments for ``n >= 3`` points; None for exactly two points,
        meaning the caller should draw a straight line.

    Raises
    ------
    InsufficientData
        Fewer than two points.
    """
    if len(points) < 2:
        raise InsufficientData(f"Curve smoothing needs at least 2 points, got {len(points)}")
    if len(points) == 2:
        return None

    pts = sorted((CurvePoint(float(p.voltage), float(p.velocity)) for p in points), key=lambda p: p.voltage)
    k = float(tension) / 3.0
    n = len(pts)

    segments: List[BezierSegment] = []
    for i in range(n - 1):
        p0 = pts[i - 1] if i > 0 else pts[i]
        p1 = pts[i]
        p2 = pts[i + 1]
        p3 = pts[i + 2] if i + 2 < n else pts[i + 1]

        cp1 = CurvePoint(p1.voltage + k * (p2.voltage - p0.voltage), p1.velocity + k * (p2.velocity - p0.velocity))
        cp2 = CurvePoint(p2.voltage - k * (p3.voltage - p1.voltage), p2.velocity - k * (p3.velocity - p1.velocity))
        segments.append(BezierSegment(start=p1, cp1=cp1, cp2=cp2, end=p2))
    return segments


# =====================================================================
#  Data space -> render space
# =====================================================================

@dataclass(frozen=True)
class RenderPoint:
    x: float
    y: float


@dataclass(frozen=True)
class RenderSegment:
    start: RenderPoint
    cp1: RenderPoint
    cp2: RenderPoint
    end: RenderPoint


@dataclass(frozen=True)
class RenderTransform:
    """Exact affine map from ``(voltage, velocity)`` to render coordinates.

    ``x = x0 + (voltage - vmin) * x_scale``

    ``y = y0 + (velmax - velocity) * y_scale`` when ``invert_y`` (screen/PDF
    coordinates grow downwards), else ``y = y0 + (velocity - velmin) * y_scale``.
    """

    x0: float
    y0: float
    voltage_range: Tuple[float, float]
    velocity_range: Tuple[float, float]
    x_scale: float
    y_scale: float
    invert_y: bool = True

    @classmethod
    def fit_box(
        cls,
        x0: float,
        y0: float,
        width: float,
        height: float,
        voltage_range: Tuple[float, float],
        velocity_range: Tuple[float, float],
        *,
        invert_y: bool = True,
    ) -> RenderTransform:
        """Transform mapping the two data ranges onto a ``width x height`` box."""
        dv = float(voltage_range[1] - voltage_range[0])
        dy = float(velocity_range[1] - velocity_range[0])
        if dv <= 0 or dy <= 0:
            raise ValueError(f"Degenerate data ranges: voltage {voltage_range}, velocity {velocity_range}")
        return cls(
            x0=float(x0),
            y0=float(y0),
            voltage_range=(float(voltage_range[0]), float(voltage_range[1])),
            velocity_range=(float(velocity_range[0]), float(velocity_range[1])),
            x_scale=float(width) / dv,
            y_scale=float(height) / dy,
            invert_y=invert_y,
        )

    def apply(self, voltage: float, velocity: float) -> RenderPoint:
        x = self.x0 + (voltage - self.voltage_range[0]) * self.x_scale
        if self.invert_y:
            y = self.y0 + (self.velocity_range[1] - velocity) * self.y_scale
        else:
            y = self.y0 + (velocity - self.velocity_range[0]) * self.y_scale
        return RenderPoint(x=x, y=y)

    def apply_point(self, point: PointLike) -> RenderPoint:
        return self.apply(point.voltage, point.velocity)

    def apply_segments(self, segments: Sequence[BezierSegment]) -> List[RenderSegment]:
        return [
            RenderSegment(
                start=self.apply_point(s.start),
                cp1=self.apply_point(s.cp1),
                cp2=self.apply_point(s.cp2),
                end=self.apply_point(s.end),
            )
            for s in segments
        ]
