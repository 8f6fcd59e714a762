"""Reproducible synthetic analyses for demo mode.

When no real model path is wired, `analyze_media` serves results generated
from a `SeededSequence` keyed by the media's source key. They use the same
`Detection`/`Hotspot` records and the same clustering as the real pipeline,
so consumers cannot tell the two apart. Only `timestamp` varies between runs.
"""

from __future__ import annotations

import math

from crowdsense.core.analytics.dedup import DedupConfig, classify_overlaps
from crowdsense.core.analytics.hotspots import (
    HotspotConfig,
    cluster_hotspots,
    coverage_density,
    detect_anomalies,
)
from crowdsense.core.analytics.pipeline import utc_timestamp
from crowdsense.core.errors import SimulatedDetectionFailure
from crowdsense.core.geometry import is_fully_visible
from crowdsense.core.seeded import SeededSequence
from crowdsense.core.types import AnalysisResult, BoundingBox, Detection, MediaKind

FAILURE_PROBABILITY = 0.02

# (minimum, spread) of the generated crowd size per media kind.
CROWD_SIZE: dict[MediaKind, tuple[int, int]] = {
    MediaKind.IMAGE: (10, 100),
    MediaKind.VIDEO: (20, 150),
    MediaKind.LIVE: (30, 200),
}


def _clamp(v: float, lo: float, hi: float) -> float:
    return lo if v < lo else hi if v > hi else v


def _synthetic_person(
    rng: SeededSequence, index: int, kind: MediaKind, seed: int
) -> Detection:
    if index % 3 == 0:
        # Every third person gathers around a cluster center away from the edges.
        cluster_x = rng() * 0.7 + 0.15
        cluster_y = rng() * 0.7 + 0.15
        x = cluster_x + (rng() * 0.2 - 0.1)
        y = cluster_y + (rng() * 0.2 - 0.1)
    else:
        x = rng()
        y = rng()

    # People further down the frame are further away, hence smaller.
    perspective = 1.0 - y * 0.5
    width = (0.03 + rng() * 0.04) * perspective
    height = (0.08 + rng() * 0.06) * perspective
    x = _clamp(x, 0.0, 1.0 - width)
    y = _clamp(y, 0.0, 1.0 - height)

    distance = math.hypot(x - 0.5, y - 0.5)
    box = BoundingBox(x=x, y=y, width=width, height=height)
    return Detection(
        id=f"synthetic-person-{index}-{seed}",
        bounding_box=box,
        confidence=max(0.7, 0.95 - distance),
        is_fully_visible=is_fully_visible(box),
        track_id=f"track-{index}-{seed}" if kind is not MediaKind.IMAGE else None,
    )


def synthesize_result(
    source_key: str,
    kind: MediaKind,
    dedup_config: DedupConfig | None = None,
    hotspot_config: HotspotConfig | None = None,
) -> AnalysisResult:
    """Generate the analysis for `source_key`.

    Raises:
        SimulatedDetectionFailure: for the ~2% of keys whose first sequence
            value falls under `FAILURE_PROBABILITY`.
    """

    rng = SeededSequence(source_key)
    if rng() < FAILURE_PROBABILITY:
        raise SimulatedDetectionFailure(
            "Detection failed. Unable to provide an accurate count of people."
        )

    minimum, spread = CROWD_SIZE[kind]
    count = math.floor(rng() * spread) + minimum
    people = [_synthetic_person(rng, i, kind, rng.initial_seed) for i in range(count)]
    people = classify_overlaps(people, dedup_config)

    if kind is MediaKind.IMAGE:
        processing_time = 0.2 + rng() * 0.8
    else:
        processing_time = 0.5 + rng() * 1.5

    timestamp = utc_timestamp()
    hotspots = cluster_hotspots(people, hotspot_config)
    density = coverage_density(people)
    return AnalysisResult(
        crowd_count=len(people),
        people=people,
        hotspots=hotspots,
        processing_time=processing_time,
        timestamp=timestamp,
        density=density,
        anomalies=detect_anomalies(density, hotspots, timestamp),
    )
