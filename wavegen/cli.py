"""
Command-line front end.

Usage:
    python -m wavegen                                   # default scene, 10s export
    python -m wavegen --scene scene.json --audio song.mp3 --start 5 --end 15
    python -m wavegen --background sky.png --logo logo.png
    python -m wavegen --frame 2500                      # preview a single frame as PNG

The export runs in real time: a 20 second loop takes 20 seconds to record.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from wavegen import __version__
from wavegen.capture import CaptureError
from wavegen.logging_config import setup_logging
from wavegen.scene import SceneState, scene_from_dict
from wavegen.studio import Studio

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wavegen",
        description="Render a seamlessly looping gradient wave video.",
    )
    parser.add_argument("--scene", type=Path, help="Scene description (JSON)")
    parser.add_argument("--audio", type=Path, help="Audio file to loop under the video")
    parser.add_argument("--start", type=float, help="Audio trim start (seconds)")
    parser.add_argument("--end", type=float, help="Audio trim end (seconds)")
    parser.add_argument("--background", type=Path, help="Background image (cover placement)")
    parser.add_argument("--logo", type=Path, help="Logo image, centred at 20%% width")
    parser.add_argument("--output-dir", type=Path, default=Path("output"),
                        help="Directory for the exported file (default: ./output)")
    parser.add_argument("--frame", type=float, metavar="MS",
                        help="Render the frame at MS milliseconds to PNG and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_scene(path):
    if path is None:
        return SceneState()
    with open(path, encoding="utf-8") as f:
        return scene_from_dict(json.load(f))


def _progress_logger():
    last = [-10]

    def report(value):
        if value >= last[0] + 10:
            last[0] = value - value % 10
            logger.info("  %d%%", value)
    return report


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        scene = load_scene(args.scene)
    except (OSError, ValueError, TypeError) as e:
        logger.error("Could not load scene %s: %s", args.scene, e)
        return 1

    studio = Studio(scene)

    if args.background is not None:
        studio.set_background_image(args.background.read_bytes())
    if args.logo is not None:
        studio.set_logo_image(args.logo.read_bytes())
    if args.audio is not None:
        if studio.attach_audio(args.audio.name, args.audio.read_bytes()):
            if args.start is not None:
                studio.set_trim_start(args.start)
            if args.end is not None:
                studio.set_trim_end(args.end)

    if args.frame is not None:
        args.output_dir.mkdir(parents=True, exist_ok=True)
        out = args.output_dir / f"frame-{args.frame:g}ms.png"
        studio.render(args.frame).save(out)
        logger.info("Frame -> %s", out)
        return 0

    try:
        artifact = studio.export(on_progress=_progress_logger())
    except CaptureError as e:
        logger.error("%s", e)
        return 1

    path = artifact.save(args.output_dir)
    logger.info("Video -> %s (%s)", path, artifact.mime_type)
    return 0


if __name__ == "__main__":
    sys.exit(main())
