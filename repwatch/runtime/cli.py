# repwatch/runtime/cli.py
from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from repwatch.audio.feedback import summary_message
from repwatch.audio.tones import LocalAudio
from repwatch.common.config import AppConfig, load_config
from repwatch.common.settings import DEFAULT_SETTINGS, WorkoutSettings
from repwatch.counter.analysis import DETECTORS, make_detector
from repwatch.counter.calibration import CalibrationEngine
from repwatch.counter.session import OrchestratorCallbacks, SessionState, WorkoutOrchestrator
from repwatch.counter.stats import WorkoutSession
from repwatch.data import db

logger = logging.getLogger(__name__)

WINDOW = "repwatch"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="repwatch", description="Count overhead reps from the webcam")
    parser.add_argument("--calibrate", action="store_true", default=None, help="measure your overhead height before the session")
    parser.add_argument("--show", action="store_true", default=None, help="open a preview window (q to stop)")
    parser.add_argument("--detector", choices=DETECTORS, default=None, help="hold: timed hold above the head; band: calibrated height band")
    parser.add_argument("--duration", type=int, default=None, help="session length in seconds")
    parser.add_argument("--countdown", type=int, default=None, help="countdown before counting starts")
    parser.add_argument("--auto-stop", action="store_true", help="stop automatically when the duration is up")
    return parser.parse_args(argv)


def session_settings(base: WorkoutSettings, args: argparse.Namespace) -> WorkoutSettings:
    update = {}
    if args.duration is not None:
        update["session_duration"] = args.duration
    if args.countdown is not None:
        update["countdown_duration"] = args.countdown
    if args.auto_stop:
        update["auto_stop_on_time_limit"] = True
    if not update:
        return base
    return WorkoutSettings.model_validate({**base.model_dump(), **update})


async def run_session(config: AppConfig, settings: WorkoutSettings, show_window: bool) -> Optional[WorkoutSession]:
    # imported here so `repwatch --help` works without the camera stack
    from repwatch.counter.pipeline import MediaPipePoseSource, OpenCVCamera, draw_overlay
    from repwatch.data.recording import VideoRecorder

    done = asyncio.Event()
    last = {"session": None, "reps": 0}

    def on_state(state: SessionState):
        print(f"[{state.value}]", flush=True)
        if state is SessionState.IDLE:
            done.set()

    def on_countdown(value: Optional[int]):
        if value is not None:
            print(f"{value}...", flush=True)

    def on_end_countdown(value: Optional[int]):
        if value is not None:
            print(f"ending in {value}...", flush=True)

    def on_progress(fraction: float):
        print(f"\rcalibrating {int(fraction * 100):3d}%", end="", flush=True)

    def on_update(session: Optional[WorkoutSession]):
        last["session"] = session
        if session is not None and session.total_reps != last["reps"]:
            last["reps"] = session.total_reps
            arm = session.reps[-1].arm_type.value
            print(f"rep {session.total_reps} ({arm}), {round(session.estimated_reps_per_minute)} RPM", flush=True)

    def on_error(message: str):
        print(f"error: {message}", file=sys.stderr, flush=True)

    def on_time_up():
        print("Time is up. Keep going or press Ctrl+C to finish.", flush=True)

    detector = make_detector(config.detector, config.detection)
    calibration = CalibrationEngine(confidence_threshold=config.detection.confidence_threshold) if config.needs_calibration else None
    audio = LocalAudio()
    orch = WorkoutOrchestrator(
        pose_source=MediaPipePoseSource(),
        camera=OpenCVCamera(config.camera_index, config.fps),
        audio=audio,
        recorder=VideoRecorder(config.recordings_dir),
        storage=db,
        settings_store=db,
        settings=settings,
        detector=detector,
        calibration=calibration,
        callbacks=OrchestratorCallbacks(
            on_session_update=on_update,
            on_countdown=on_countdown,
            on_session_end_countdown=on_end_countdown,
            on_calibration_progress=on_progress,
            on_error=on_error,
            on_state_change=on_state,
            on_time_up=on_time_up,
        ),
        frame_interval_s=config.frame_interval_s,
        frame_size=(config.frame_width, config.frame_height),
    )

    if show_window:
        import cv2

        def render(frame, prediction):
            if frame is None:
                return
            lines = (f"{orch.state.value}", f"reps: {last['reps']}")
            cv2.imshow(WINDOW, draw_overlay(frame.copy(), prediction, lines, config.detection.confidence_threshold))
            if cv2.waitKey(1) & 0xFF == ord("q"):
                orch.stop()

        orch.renderer = render

    try:
        if await orch.start():
            await done.wait()
    finally:
        orch.stop()
        orch.dispose()
        if show_window:
            import cv2
            cv2.destroyAllWindows()

        final = last["session"]
        if final is not None:
            print(summary_message(final.total_reps, final.reps_per_minute), flush=True)
    return final


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = load_config()
    if args.calibrate:
        config.calibrate = True
    if args.show:
        config.show_window = True
    if args.detector:
        config.detector = args.detector
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.configure(config.db_path)
    settings = session_settings(db.load_settings() or DEFAULT_SETTINGS, args)
    print("Ready. Raise your hands above your head to count a rep. Ctrl+C to exit.", flush=True)
    try:
        session = asyncio.run(run_session(config, settings, config.show_window))
    except KeyboardInterrupt:
        print("\nExiting…", flush=True)
        return 0
    return 0 if session is not None else 1


if __name__ == "__main__":
    sys.exit(main())
