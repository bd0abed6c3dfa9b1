"""Main entry point for lyric-video."""

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from lyric_video.core.config import get_settings
from lyric_video.core.exceptions import ConfigError
from lyric_video.core.orchestrator import ExportOrchestrator
from lyric_video.models.track import Project


def setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    level = "DEBUG" if debug else "INFO"
    logger.add(sys.stderr, format=log_format, level=level, colorize=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lyric-video", description="Render and export lyric videos")
    parser.add_argument("-c", "--config", help="Settings YAML file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging, keep temp files")

    commands = parser.add_subparsers(dest="command", required=True)

    export = commands.add_parser("export", help="Export a project file to a video")
    export.add_argument("project", type=Path, help="Project YAML file")
    export.add_argument("-o", "--output", type=Path, help="Output video path")
    export.add_argument("--backend", choices=["auto", "pipe", "sequence", "live"], help="Encode backend")
    export.add_argument("--codec", help="Video codec (h264, h265, vp9, av1)")
    export.add_argument("--quality", choices=["low", "med", "high"], help="Quality tier")
    export.add_argument("--resolution", choices=["720p", "1080p"], help="Output resolution")
    export.add_argument("--aspect-ratio", help="Aspect ratio, e.g. 16:9 or 9:16")
    export.add_argument("--fps", type=int, help="Frame rate")
    return parser


async def run_export(args: argparse.Namespace) -> int:
    settings = get_settings(args.config)
    settings.paths.ensure_dirs()

    project = Project.from_yaml(args.project)
    overrides = {
        "output_path": args.output,
        "backend": args.backend,
        "codec": args.codec,
        "quality": args.quality,
        "resolution": args.resolution,
        "aspect_ratio": args.aspect_ratio,
        "fps": args.fps,
    }
    options = project.export.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    orchestrator = ExportOrchestrator(settings)
    last = {"percent": -1}

    def on_progress(percent: float, stage: str) -> None:
        if int(percent) // 10 != last["percent"] // 10:
            logger.info(f"[{percent:5.1f}%] {stage}")
        last["percent"] = int(percent)

    if len(project.tracks) == 1:
        result = await orchestrator.export(
            project.tracks[0], project.slides, project.preset, project.render, options, on_progress
        )
    else:
        result = await orchestrator.export_playlist(
            project.tracks, project.slides, project.preset, project.render, options, on_progress
        )

    if result.success:
        logger.info(
            f"Exported {result.duration:.2f}s ({result.frame_count} frames) to {result.output_path} "
            f"in {result.elapsed:.1f}s"
        )
        return 0
    if result.aborted:
        logger.warning("Export aborted")
        return 130
    logger.error(f"Export failed [{result.error_kind} @ {result.error_stage}]: {result.error_message}")
    return 1


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()

    settings = get_settings(args.config)
    if args.debug:
        settings.debug = True
    setup_logging(settings.debug)

    try:
        code = asyncio.run(run_export(args))
    except ConfigError as e:
        logger.error(str(e))
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
