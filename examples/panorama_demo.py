#!/usr/bin/env python3
"""Demo: build a panorama from a recorded event file.

Replays an event file through a producer thread into the tracking loop,
prints the tracking progress and saves the panorama and the pose log.

Usage:
    uv run python examples/panorama_demo.py --camera examples/camera_dvs128.yaml \
        --events data/events.txt
    uv run python examples/panorama_demo.py --camera examples/camera_dvs128.yaml \
        --events data/events.txt --rerun --upscale 2.0 --exr
"""

import argparse
import logging
import sys
import threading
import time
from pathlib import Path

import yaml

from panotrack import CameraParameters, TrackerConfig, TrackingLoop, load_events


def replay_events(
    tracker: TrackingLoop,
    events: list,
    chunk_size: int,
    realtime: bool,
    done: threading.Event,
) -> None:
    """Push events to the tracker in chunks, optionally at recording speed."""
    start_wall = time.perf_counter()
    t0 = events[0].t if events else 0.0
    for i in range(0, len(events), chunk_size):
        chunk = events[i : i + chunk_size]
        if realtime:
            delay = (chunk[0].t - t0) - (time.perf_counter() - start_wall)
            if delay > 0:
                time.sleep(delay)
        tracker.add_events(chunk)
    done.set()


def main() -> None:
    """Run the panorama demo."""
    parser = argparse.ArgumentParser(description="Event camera panoramic tracking")
    parser.add_argument("--camera", type=Path, required=True, help="Calibration YAML")
    parser.add_argument("--events", type=Path, required=True, help="Event text file")
    parser.add_argument(
        "--output", type=Path, default=Path("output"), help="Output directory"
    )
    parser.add_argument("--upscale", type=float, default=None, help="Panorama zoom")
    parser.add_argument(
        "--chunk-size", type=int, default=500, help="Events per producer push"
    )
    parser.add_argument(
        "--realtime", action="store_true", help="Replay at recording speed"
    )
    parser.add_argument("--rerun", action="store_true", help="Stream to Rerun viewer")
    parser.add_argument("--npy", action="store_true", help="Also save map as .npy")
    parser.add_argument("--exr", action="store_true", help="Also save map as .exr")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # Configuration
    with open(args.camera, "r") as f:
        calibration = yaml.safe_load(f)
    calibration["pose_output_dir"] = str(args.output)
    if args.upscale is not None:
        calibration["upscale"] = args.upscale
    camera = CameraParameters.from_dict(calibration, source=str(args.camera))
    config = TrackerConfig.from_dict(calibration.get("tracker", {}))
    args.output.mkdir(parents=True, exist_ok=True)

    print("Loading events...")
    events = load_events(args.events)
    if not events:
        print(f"Error: no events in {args.events}")
        sys.exit(1)
    print(f"Loaded {len(events)} events spanning {events[-1].t - events[0].t:.3f}s")
    print(f"Sensor {camera.width}x{camera.height}, panorama {camera.output_width}x"
          f"{camera.output_height}, upscale {camera.upscale}")
    print("=" * 60)

    tracker = TrackingLoop(camera, config)

    if args.rerun:
        from panotrack import RerunVisualizer

        visualizer = RerunVisualizer()
        tracker.set_preview_callback(visualizer.log_preview)
        tracker.set_info_callback(visualizer.log_status)
        tracker.set_frame_callback(visualizer.log_frame)
    else:
        tracker.set_info_callback(lambda text: print(f"  {text}"))

    done = threading.Event()
    producer = threading.Thread(
        target=replay_events,
        args=(tracker, events, args.chunk_size, args.realtime, done),
        daemon=True,
    )

    start_time = time.perf_counter()
    worker = tracker.start()
    producer.start()

    # Wait until the producer is done and the loop has finished every full batch
    while worker.is_alive() and not done.wait(0.05):
        pass
    tracker.wait_until_drained()

    if not worker.is_alive():
        print("Error: tracking loop aborted (see log)")
        sys.exit(1)

    elapsed = time.perf_counter() - start_time
    batches = tracker.state.image_id
    quality = tracker.state.tracking_quality
    pose = tracker.pose

    # Save before stop(), which resets the map
    map_path = args.output / "panorama"
    written = tracker.save_map(map_path, as_png=True, as_npy=args.npy, as_exr=args.exr)
    preview_path = tracker.save_current_state(args.output / "preview")

    tracker.stop()
    tracker.join()

    print()
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"Batches processed:  {batches}")
    print(f"Tracking quality:   {quality:.3f}")
    print(f"Final pose (rad):   [{pose[0]:.4f}, {pose[1]:.4f}, {pose[2]:.4f}]")
    print(f"Wall time:          {elapsed:.2f}s")
    for path in written:
        print(f"Map saved:          {path}")
    print(f"Preview saved:      {preview_path}")


if __name__ == "__main__":
    main()
