#!/usr/bin/env python3
"""
Cut a clip out of a remote video and deliver it as an MP4.
- Downloads the best source at or below 1080p, falling back to a simpler
  downloader and finally to a placeholder clip.
- Optional portrait reframing (1080x1920) and burned-in title/duration text.
- Archival or mobile encoding profile for the final file.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from config.settings import LOG_DIR, SCRATCH_DIR
from engine.controller import ClipProcessor
from engine.errors import InvalidClipRequest
from engine.job import QUALITY_ARCHIVAL, QUALITY_MOBILE
from engine.logging_utils import configure_logging


def _print_report(report):
    print(f"[{report.percent:3d}%] {report.message}", flush=True)


def _default_output(job_id):
    return os.path.abspath(f"clip_{job_id}.mp4")


async def run_clip(args):
    processor = ClipProcessor(scratch_dir=args.scratch_dir)
    processor.initialize()
    payload = {
        "source": args.source,
        "start": args.start,
        "end": args.end,
        "portrait": args.portrait,
        "overlay": args.overlay,
        "quality": args.quality,
        "title": args.title,
    }
    job = processor.create_job(payload)
    job.progress.add_listener(_print_report)
    await processor.run_job(job)
    return job


def main():
    parser = argparse.ArgumentParser(description="Extract, reframe and encode a clip from a video source.")
    parser.add_argument("source", help="Video id or URL.")
    parser.add_argument("--start", type=float, required=True, help="Clip start in seconds.")
    parser.add_argument("--end", type=float, required=True, help="Clip end in seconds.")
    parser.add_argument("--portrait", action="store_true", help="Reframe to 1080x1920.")
    parser.add_argument("--overlay", action="store_true", help="Burn title and duration text into the frame.")
    parser.add_argument("--title", help="Overlay title (defaults to a generic label).")
    parser.add_argument("--quality", choices=(QUALITY_ARCHIVAL, QUALITY_MOBILE), default=QUALITY_MOBILE)
    parser.add_argument("--output", help="Where to write the clip (default: ./clip_<job id>.mp4).")
    parser.add_argument("--scratch-dir", default=str(SCRATCH_DIR), help="Directory for intermediate files.")
    parser.add_argument("--log-dir", default=LOG_DIR, help="Also write logs to clipper.log in this directory.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    configure_logging(args.log_dir, logging.DEBUG if args.verbose else logging.INFO)

    try:
        job = asyncio.run(run_clip(args))
    except InvalidClipRequest as exc:
        logging.error("Invalid request: %s", exc)
        sys.exit(2)
    except RuntimeError as exc:
        logging.error("%s", exc)
        sys.exit(1)

    if job.failure is not None:
        print(json.dumps(job.failure.to_dict(), indent=2))
        sys.exit(1)

    output = args.output or _default_output(job.id)
    with open(output, "wb") as handle:
        handle.write(job.result.data)
    logging.info("Clip written: %s", output)
    print(json.dumps({"output": output, **job.result.metadata.to_dict()}, indent=2))


if __name__ == "__main__":
    main()
