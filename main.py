#!/usr/bin/env python3
"""
studyscribe v1.0.0: command-line entry point.
Submits a media source through acquisition and chunked transcription and
reports the status a polling client would see.
"""

import sys
import os
import argparse
import json
import logging
import shutil
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studyscribe.core.constants import APP_NAME, APP_VERSION, SOURCE_TYPES, SourceType
from studyscribe.core.config import AppConfig
from studyscribe.core.diagnostics import get_diagnostics
from studyscribe.core.models_sqlite import UploadedFile

logger = logging.getLogger(APP_NAME)


def setup_logging(log_dir: Path, verbose: bool = False) -> Path:
    """Log to <log_dir>/app.log and to stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    return log_file


def check_prerequisites():
    """Check that yt-dlp, ffmpeg and ffprobe are available."""
    missing = [tool for tool in ("yt-dlp", "ffmpeg", "ffprobe") if not shutil.which(tool)]
    if missing:
        logger.error("Missing tools: %s. PATH = %s", ", ".join(missing), os.environ.get("PATH", ""))
        sys.exit(f"Missing required tools: {', '.join(missing)}")

    for tool in ("yt-dlp", "ffmpeg"):
        logger.info("%s found at: %s", tool, shutil.which(tool))


def _print_video(service, video_id: str):
    video = service.get_video(video_id)
    if video is None:
        print(f"Video {video_id} not found")
        return 1

    print(f"id:       {video.id}")
    print(f"status:   {video.status}")
    print(f"stage:    {video.stage or '-'}")
    print(f"duration: {video.duration:.0f}s")
    print(f"audio:    {video.source_value}")
    for t in service.get_transcriptions(video_id):
        print(f"\n── transcription {t.id} (language={t.language}, confidence={t.confidence})")
        print(t.content)
        if t.summary:
            print("\n── summary")
            print(t.summary)
    return 0


def cmd_submit(service, config: AppConfig, args) -> int:
    upload = None
    source_value = args.source
    if args.source_type == SourceType.UPLOAD:
        path = Path(args.source).expanduser().resolve()
        upload = UploadedFile(path=str(path), original_name=path.name)
        source_value = str(path)

    if args.no_wait:
        # Persist only; a later `recover` run does the work
        video = service.create_video(args.owner, args.source_type, source_value, upload,
                                     submit=False)
        print(f"Video {video.id} queued; run `{APP_NAME} recover` to process it")
        return 0

    check_prerequisites()
    if args.no_transcribe:
        service.scheduler.auto_transcribe = False

    service.recover()
    video = service.create_video(args.owner, args.source_type, source_value, upload)
    print(f"Video {video.id} queued")

    service.wait_idle()
    service.summarizer.shutdown(wait=True)
    return _print_video(service, video.id)


def cmd_recover(service, config: AppConfig, args) -> int:
    check_prerequisites()
    resubmitted = service.recover()
    print(f"Resubmitted {len(resubmitted)} queued videos")
    service.wait_idle()
    service.summarizer.shutdown(wait=True)
    for video_id in resubmitted:
        video = service.get_video(video_id)
        print(f"{video_id}: {video.status if video else 'deleted'}")
    return 0


def cmd_status(service, config: AppConfig, args) -> int:
    return _print_video(service, args.video_id)


def cmd_delete(service, config: AppConfig, args) -> int:
    if service.delete_video(args.video_id):
        print(f"Deleted {args.video_id}")
        return 0
    print(f"Video {args.video_id} not found")
    return 1


def cmd_diagnostics(service, config: AppConfig, args) -> int:
    print(json.dumps(get_diagnostics(config), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Chunked media transcription pipeline")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("submit", help="Acquire and transcribe a media source")
    p.add_argument("source_type", choices=SOURCE_TYPES)
    p.add_argument("source", help="YouTube URL, local file path, or http(s) URL")
    p.add_argument("--owner", default="cli")
    p.add_argument("--no-transcribe", action="store_true", help="Stop after audio acquisition")
    p.add_argument("--no-wait", action="store_true",
                   help="Only record the video; a later `recover` run processes it")
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("recover", help="Fail interrupted videos and process queued ones")
    p.set_defaults(func=cmd_recover)

    p = sub.add_parser("status", help="Show a video's status and transcriptions")
    p.add_argument("video_id")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("delete", help="Delete a video and its audio artifact")
    p.add_argument("video_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("diagnostics", help="Show tool versions and paths")
    p.set_defaults(func=cmd_diagnostics)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig(args.config)
    log_file = setup_logging(config.log_dir, args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Command: %s", args.command)
    logger.info("=" * 60)

    from studyscribe.core.service import PipelineService

    service = None
    try:
        service = PipelineService.from_config(config)
        return args.func(service, config, args)
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        print(f"{type(e).__name__}: {e}\nCheck logs at: {log_file}", file=sys.stderr)
        return 1
    finally:
        if service is not None:
            service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
