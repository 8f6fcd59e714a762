"""Density hotspot clustering.

Detections are reduced to their box centers and greedily grouped into
clusters; nearby clusters are then merged and each survivor becomes a
`Hotspot` whose radius/intensity grow with its share of the crowd. Both
saturate once a cluster holds ~30% of all people, so a single dense group
cannot dominate the map regardless of the absolute crowd size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from crowdsense.core.geometry import box_area, box_center
from crowdsense.core.types import Anomaly, Detection, Hotspot, Point

# Coverage (percent of frame area covered by boxes) above which a surge is flagged.
SURGE_DENSITY = 75
COVERAGE_SCALE = 500.0


@dataclass(frozen=True)
class HotspotConfig:
    """Clustering radius and hotspot sizing parameters (normalized units)."""

    cluster_radius: float = 0.15
    merge_factor: float = 1.5
    saturation_share: float = 0.3
    base_radius: float = 0.08
    radius_gain: float = 0.15
    base_intensity: float = 0.4
    intensity_gain: float = 0.6


@dataclass
class ClusterAccumulator:
    """Running weighted centroid of a cluster under construction."""

    x: float
    y: float
    count: int = 1

    def add(self, point: Point, weight: int = 1) -> None:
        total = self.count + weight
        self.x = (self.x * self.count + point[0] * weight) / total
        self.y = (self.y * self.count + point[1] * weight) / total
        self.count = total

    def distance_to(self, point: Point) -> float:
        return math.hypot(self.x - point[0], self.y - point[1])


def _assign(centers: list[Point], radius: float) -> list[ClusterAccumulator]:
    clusters: list[ClusterAccumulator] = []
    for center in centers:
        nearest: ClusterAccumulator | None = None
        nearest_d = radius
        for cluster in clusters:
            d = cluster.distance_to(center)
            if d < nearest_d:
                nearest, nearest_d = cluster, d
        if nearest is None:
            clusters.append(ClusterAccumulator(x=center[0], y=center[1]))
        else:
            nearest.add(center)
    return clusters


def _merge(clusters: list[ClusterAccumulator], distance: float) -> list[ClusterAccumulator]:
    """Merge clusters closer than `distance` until no pair qualifies."""

    current = clusters
    while True:
        merged: list[ClusterAccumulator] = []
        for cluster in current:
            for existing in merged:
                if existing.distance_to((cluster.x, cluster.y)) < distance:
                    existing.add((cluster.x, cluster.y), weight=cluster.count)
                    break
            else:
                merged.append(ClusterAccumulator(cluster.x, cluster.y, cluster.count))
        if len(merged) == len(current):
            return merged
        current = merged


def cluster_hotspots(
    people: list[Detection], config: HotspotConfig | None = None
) -> list[Hotspot]:
    """Return density hotspots for the given detections (empty for no people)."""

    cfg = config or HotspotConfig()
    if not people:
        return []

    centers = [box_center(p.bounding_box) for p in people]
    clusters = _assign(centers, cfg.cluster_radius)
    clusters = _merge(clusters, cfg.cluster_radius * cfg.merge_factor)

    saturation = len(people) * cfg.saturation_share
    hotspots: list[Hotspot] = []
    for cluster in clusters:
        share = min(cluster.count / saturation, 1.0)
        hotspots.append(
            Hotspot(
                x=cluster.x,
                y=cluster.y,
                radius=cfg.base_radius + share * cfg.radius_gain,
                intensity=cfg.base_intensity + share * cfg.intensity_gain,
            )
        )
    return hotspots


def coverage_density(people: list[Detection]) -> int:
    """Return a 0-100 crowding score from the frame area covered by boxes."""

    total = sum(box_area(p.bounding_box) for p in people)
    return min(int(math.floor(total * COVERAGE_SCALE)), 100)


def region_name(point: Point) -> str:
    """Name the ninth of the frame containing `point`, e.g. "northeast"."""

    x, y = point
    vertical = "north" if y < 1 / 3 else "south" if y > 2 / 3 else ""
    horizontal = "west" if x < 1 / 3 else "east" if x > 2 / 3 else ""
    return (vertical + horizontal) or "center"


def detect_anomalies(density: int, hotspots: list[Hotspot], timestamp: str) -> list[Anomaly]:
    """Flag a crowd surge when the coverage density is high.

    The surge is located at the most intense hotspot.
    """

    if density <= SURGE_DENSITY or not hotspots:
        return []
    # Confidence grows from 0.7 at the surge threshold to 1.0 at full coverage.
    confidence = 0.7 + 0.3 * (density - SURGE_DENSITY) / (100 - SURGE_DENSITY)
    peak = max(hotspots, key=lambda h: h.intensity)
    return [
        Anomaly(
            type="crowd_surge",
            confidence=confidence,
            location=region_name((peak.x, peak.y)),
            timestamp=timestamp,
        )
    ]
