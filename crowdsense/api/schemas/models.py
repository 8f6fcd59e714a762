"""Pydantic models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from crowdsense.core.types import AnalysisResult, Detection


class BoundingBoxSchema(BaseModel):
    """Normalized `xywh` box."""

    x: float
    y: float
    width: float
    height: float


class KeypointSchema(BaseModel):
    x: float
    y: float
    score: float
    name: str = ""


class DetectionSchema(BaseModel):
    """Detected person payload."""

    id: str
    bounding_box: BoundingBoxSchema
    confidence: float
    keypoints: list[KeypointSchema] | None = None
    is_fully_visible: bool = False
    is_overlapping: bool = False
    track_id: str | None = None

    @classmethod
    def from_detection(cls, d: Detection) -> DetectionSchema:
        box = d.bounding_box
        return cls(
            id=d.id,
            bounding_box=BoundingBoxSchema(x=box.x, y=box.y, width=box.width, height=box.height),
            confidence=d.confidence,
            keypoints=(
                [KeypointSchema(x=k.x, y=k.y, score=k.score, name=k.name) for k in d.keypoints]
                if d.keypoints is not None
                else None
            ),
            is_fully_visible=d.is_fully_visible,
            is_overlapping=d.is_overlapping,
            track_id=d.track_id,
        )


class HotspotSchema(BaseModel):
    x: float
    y: float
    radius: float
    intensity: float


class AnomalySchema(BaseModel):
    type: str
    confidence: float
    location: str
    timestamp: str


class AnalysisSchema(BaseModel):
    """Analysis result payload."""

    crowd_count: int
    people: list[DetectionSchema]
    hotspots: list[HotspotSchema]
    processing_time: float
    timestamp: str
    density: int = 0
    anomalies: list[AnomalySchema] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: AnalysisResult) -> AnalysisSchema:
        return cls(
            crowd_count=result.crowd_count,
            people=[DetectionSchema.from_detection(p) for p in result.people],
            hotspots=[
                HotspotSchema(x=h.x, y=h.y, radius=h.radius, intensity=h.intensity)
                for h in result.hotspots
            ],
            processing_time=result.processing_time,
            timestamp=result.timestamp,
            density=result.density,
            anomalies=[
                AnomalySchema(
                    type=a.type, confidence=a.confidence, location=a.location, timestamp=a.timestamp
                )
                for a in result.anomalies
            ],
        )


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    confidence_threshold: float = Field(gt=0.0, le=1.0)
    enhance_low_light: bool = True
    max_detections: int = Field(default=200, ge=1)
    use_multiple_models: bool = True
    min_keypoints: int = Field(default=3, ge=1)
    frame_rate: float = Field(default=1.0, gt=0.0)
    max_duration: float = Field(default=30.0, gt=0.0)
    sample_frames: int | None = Field(default=10, ge=1)
    duplicate_iou: float = Field(default=0.4, ge=0.0, le=1.0)
    overlap_iou_low: float = Field(default=0.1, ge=0.0, le=1.0)
    overlap_iou_high: float = Field(default=0.5, ge=0.0, le=1.0)
    match_iou: float = Field(default=0.2, ge=0.0, le=1.0)
    cluster_radius: float = Field(default=0.15, gt=0.0, le=1.0)
    detector_model: str = "yolo11n.pt"
    pose_model: str = "yolo11n-pose.pt"
    demo_mode: bool = True
    media_dir: str = "testdata/media"
    failure_retries: int = Field(default=2, ge=0)
    retry_backoff_s: float = Field(default=0.5, ge=0.0)

    @field_validator("detector_model", "pose_model")
    @classmethod
    def _validate_model_name(cls, v: str) -> str:
        v2 = str(v).strip()
        if not v2:
            raise ValueError("model name must not be empty")
        return v2

    @model_validator(mode="after")
    def _validate_overlap_band(self) -> ConfigSchema:
        if self.overlap_iou_low >= self.overlap_iou_high:
            raise ValueError("overlap_iou_low must be below overlap_iou_high")
        return self
