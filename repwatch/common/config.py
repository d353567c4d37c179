from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from repwatch.counter.analysis import DETECTORS, DetectionConfig

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("ignoring %s=%r (not an integer), using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("ignoring %s=%r (not a number), using %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    db_path: Path = Path("./repwatch.db")
    recordings_dir: Path = Path("./recordings")
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480
    fps: int = 30
    calibrate: bool = False
    show_window: bool = False
    log_level: str = "INFO"
    detector: str = "hold"
    host: str = "127.0.0.1"
    port: int = 8000
    detection: DetectionConfig = field(default_factory=DetectionConfig)

    @property
    def frame_interval_s(self) -> float:
        return 1.0 / max(1, self.fps)

    @property
    def needs_calibration(self) -> bool:
        # the band detector has no line until thresholds exist
        return self.calibrate or self.detector == "band"


def _env_detector() -> str:
    raw = os.getenv("REPWATCH_DETECTOR", "hold").strip().lower()
    if raw not in DETECTORS:
        logger.warning("ignoring REPWATCH_DETECTOR=%r (expected one of %s), using hold", raw, ", ".join(DETECTORS))
        return "hold"
    return raw


def load_config() -> AppConfig:
    base = DetectionConfig()
    detection = DetectionConfig(
        confidence_threshold=_env_float("REPWATCH_CONFIDENCE", base.confidence_threshold),
        head_offset_px=_env_float("REPWATCH_HEAD_OFFSET_PX", base.head_offset_px),
        hold_ms=_env_int("REPWATCH_HOLD_MS", base.hold_ms),
        cooldown_ms=_env_int("REPWATCH_COOLDOWN_MS", base.cooldown_ms),
        debounce_ms=_env_int("REPWATCH_DEBOUNCE_MS", base.debounce_ms),
    )
    return AppConfig(
        db_path=Path(os.getenv("REPWATCH_DB_PATH", "./repwatch.db")),
        recordings_dir=Path(os.getenv("REPWATCH_RECORDINGS_DIR", "./recordings")),
        camera_index=_env_int("REPWATCH_CAMERA_INDEX", 0),
        frame_width=_env_int("REPWATCH_FRAME_WIDTH", 640),
        frame_height=_env_int("REPWATCH_FRAME_HEIGHT", 480),
        fps=_env_int("REPWATCH_FPS", 30),
        calibrate=_env_bool("REPWATCH_CALIBRATE", False),
        show_window=_env_bool("REPWATCH_SHOW_WINDOW", False),
        log_level=os.getenv("REPWATCH_LOG_LEVEL", "INFO").upper(),
        detector=_env_detector(),
        host=os.getenv("REPWATCH_HOST", "127.0.0.1"),
        port=_env_int("REPWATCH_PORT", 8000),
        detection=detection,
    )
