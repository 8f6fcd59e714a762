"""Command-line crowd analysis of an image, a video or a demo key.

Examples:
    python -m crowdsense.tools.analyze_media --input crowd.jpg --output out.json
    python -m crowdsense.tools.analyze_media --input clip.mp4 --output out.json --mock
    python -m crowdsense.tools.analyze_media --demo demo-image-0 --output out.json
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path

import cv2
import numpy as np

from crowdsense.api.services.media_store import VIDEO_SUFFIXES
from crowdsense.core.analytics.dedup import DedupConfig
from crowdsense.core.analytics.fusion import CrossModelFusion, FusionConfig
from crowdsense.core.analytics.hotspots import HotspotConfig
from crowdsense.core.analytics.pipeline import DetectionPipeline, VideoDetectionOptions
from crowdsense.core.detectors.yolo import ModelRegistry
from crowdsense.core.errors import CrowdAnalysisError, InvalidSource
from crowdsense.core.overlay.draw import draw_overlays
from crowdsense.core.service import CrowdAnalysisService
from crowdsense.core.synthetic import synthesize_result
from crowdsense.core.types import AnalysisResult, MediaKind
from crowdsense.core.video_sources.base import ImageSource, VideoFileSource

DEMO_CANVAS_SIZE = (640, 480)


class _DummyDetector:
    async def detect(self, frame, max_detections):  # pragma: no cover - trivial
        return []


class _DummyPoseEstimator:
    async def estimate_poses(self, frame, max_poses):  # pragma: no cover - trivial
        return []


def _to_jsonable(obj):
    if is_dataclass(obj):
        return _to_jsonable(asdict(obj))
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, dict):
        return {str(k): _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    return obj


def _options(args) -> VideoDetectionOptions:
    return VideoDetectionOptions(
        confidence_threshold=args.conf,
        enhance_low_light=not args.no_enhance,
        max_detections=args.max_detections,
        use_multiple_models=not args.single_model,
        min_keypoints=args.min_keypoints,
        frame_rate=args.frame_rate,
        max_duration=args.max_duration,
        sample_frames=args.sample_frames or None,
    )


def _service(args) -> CrowdAnalysisService:
    if args.mock:
        detector, pose_estimator = _DummyDetector(), _DummyPoseEstimator()
    else:
        registry = ModelRegistry(args.model, args.pose_model)
        detector, pose_estimator = registry.detector, registry.pose_estimator
    pipeline = DetectionPipeline(
        detector,
        pose_estimator,
        fusion=CrossModelFusion(FusionConfig(match_iou=args.match_iou)),
        dedup_config=DedupConfig(duplicate_iou=args.duplicate_iou),
        hotspot_config=HotspotConfig(cluster_radius=args.cluster_radius),
    )
    options = _options(args)
    return CrowdAnalysisService(
        pipeline=pipeline, image_options=options, video_options=options, demo_mode=False
    )


async def _analyze(args) -> tuple[AnalysisResult, np.ndarray | None]:
    """Return the result and, when available, the frame to draw overlays on."""

    if args.demo:
        result = synthesize_result(args.demo, MediaKind(args.kind))
        w, h = DEMO_CANVAS_SIZE
        return result, np.zeros((h, w, 3), dtype=np.uint8)

    service = _service(args)
    path = Path(args.input)
    if path.suffix.lower() in VIDEO_SUFFIXES:
        with VideoFileSource(path) as source:
            return await service.analyze_video(source), None
    frame = ImageSource.from_path(path).read()
    if frame is None:
        raise InvalidSource(f"Failed to load image: {path}")
    return await service.analyze_image(frame), frame


def run(args) -> int:
    try:
        result, canvas = asyncio.run(_analyze(args))
    except CrowdAnalysisError as exc:
        print(f"Analysis failed: {exc}", file=sys.stderr)
        return 1

    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(_to_jsonable(result), f, indent=2)
    print(f"Wrote analysis of {result.crowd_count} people to {out_path}")

    if args.overlay:
        if canvas is None:
            print("Overlay is only rendered for image and demo inputs", file=sys.stderr)
        else:
            cv2.imwrite(str(args.overlay), draw_overlays(canvas, result))
            print(f"Wrote overlay to {args.overlay}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Count and locate people in an image or video")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", help="Path to an image or video file")
    source.add_argument("--demo", metavar="KEY", help="Emit the synthetic analysis for KEY")
    parser.add_argument("--output", required=True, help="Where to save JSON output")
    parser.add_argument("--overlay", help="Optional PNG path for a rendered overlay")
    parser.add_argument(
        "--kind",
        choices=[k.value for k in MediaKind],
        default=MediaKind.IMAGE.value,
        help="Media kind used with --demo",
    )
    parser.add_argument(
        "--mock", action="store_true", help="Use empty detectors (no model download)"
    )
    parser.add_argument("--model", default="yolo11n.pt")
    parser.add_argument("--pose-model", default="yolo11n-pose.pt")
    parser.add_argument("--conf", type=float, default=0.35)
    parser.add_argument("--max-detections", type=int, default=200)
    parser.add_argument("--min-keypoints", type=int, default=3)
    parser.add_argument("--no-enhance", action="store_true", help="Skip low-light enhancement")
    parser.add_argument(
        "--single-model", action="store_true", help="Skip pose fusion (box detector only)"
    )
    parser.add_argument("--frame-rate", type=float, default=1.0)
    parser.add_argument("--max-duration", type=float, default=30.0)
    parser.add_argument(
        "--sample-frames", type=int, default=10, help="0 derives the count from --frame-rate"
    )
    parser.add_argument("--duplicate-iou", type=float, default=0.4)
    parser.add_argument("--match-iou", type=float, default=0.2)
    parser.add_argument("--cluster-radius", type=float, default=0.15)
    parser.add_argument("--log-level", default="WARNING")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper())
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
