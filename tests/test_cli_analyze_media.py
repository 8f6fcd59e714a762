import json
import os
import subprocess
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

from crowdsense.tools import analyze_media


def _env():
    env = os.environ.copy()
    env["PYTHONPATH"] = env.get("PYTHONPATH", ".") + os.pathsep + str(Path(__file__).resolve().parents[1])
    return env


def test_demo_cli_writes_json_and_overlay(tmp_path: Path):
    out_path = tmp_path / "out.json"
    overlay_path = tmp_path / "overlay.png"
    cmd = [
        sys.executable,
        "-m",
        "crowdsense.tools.analyze_media",
        "--demo",
        "demo-image-0",
        "--output",
        str(out_path),
        "--overlay",
        str(overlay_path),
    ]
    result = subprocess.run(cmd, env=_env(), capture_output=True, text=True)
    assert result.returncode == 0, result.stderr

    data = json.loads(out_path.read_text())
    assert data["crowd_count"] == len(data["people"])
    assert data["hotspots"]
    assert cv2.imread(str(overlay_path)) is not None


def test_mock_cli_on_image(tmp_path: Path):
    image_path = tmp_path / "crowd.png"
    cv2.imwrite(str(image_path), np.full((48, 64, 3), 120, dtype=np.uint8))
    out_path = tmp_path / "out.json"

    code = analyze_media.main(["--input", str(image_path), "--output", str(out_path), "--mock"])
    assert code == 0
    data = json.loads(out_path.read_text())
    assert data["crowd_count"] == 0
    assert data["people"] == []


def test_cli_reports_failures(tmp_path: Path):
    out_path = tmp_path / "out.json"
    assert analyze_media.main(["--demo", "media-0", "--output", str(out_path)]) == 1
    assert not out_path.exists()
    missing = tmp_path / "missing.png"
    assert analyze_media.main(["--input", str(missing), "--output", str(out_path), "--mock"]) == 1


def test_mock_cli_on_video_with_negative_sample_count(tmp_path: Path):
    video_path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(video_path), cv2.VideoWriter_fourcc(*"MJPG"), 5.0, (64, 48))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video on this platform")
    for i in range(10):
        writer.write(np.full((48, 64, 3), i * 20, dtype=np.uint8))
    writer.release()
    out_path = tmp_path / "out.json"

    code = analyze_media.main(
        ["--input", str(video_path), "--output", str(out_path), "--mock", "--sample-frames", "-1"]
    )
    assert code == 0
    assert json.loads(out_path.read_text())["crowd_count"] == 0
