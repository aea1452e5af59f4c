"""
CLI entrypoint:
  viraltube                       # autonomous loop (research -> publish, forever)
  viraltube --manual --topic "Karna"
  viraltube --manual --script-file my_script.txt --images a.png b.png
  python -m viraltube --once
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from rich.prompt import Confirm

from viraltube import config
from viraltube.adapters import default_adapters
from viraltube.application.pipeline import StageController
from viraltube.application.retry import RetryPolicy
from viraltube.domain.models import Stage
from viraltube.logger import console, setup_logger

ONCE_POLL_SECONDS = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Autonomous video pipeline: research, script, assets, render and publish"
    )
    parser.add_argument("--topic", type=str, help="Manual topic concept (requires --manual)")
    parser.add_argument("--script-file", type=str, help="Use narration from this file instead of AI scripting (requires --manual)")
    parser.add_argument("--images", nargs="+", default=[], help="Custom storyboard images, used before AI-generated ones")
    parser.add_argument("--manual", action="store_true", help="Disable autonomous mode: stop at review before publishing")
    parser.add_argument("--once", action="store_true", help="Run a single cycle instead of looping")
    parser.add_argument("--publish", action="store_true", help="Publish without asking when the run stops at review")
    parser.add_argument("--log-level", type=str, default=config.LOG_LEVEL, help="Logging level (default from LOG_LEVEL)")
    return parser


def build_controller(autonomous: bool, **overrides) -> StageController:
    adapters = default_adapters(**overrides)
    reselect = adapters.pop("reselect_key", None)
    return StageController(
        **adapters,
        retry_policy=RetryPolicy(reselect_credential=reselect, sleep=adapters.get("sleep")),
        autonomous=autonomous,
        voice_id=config.VOICE_NAME,
    )


def read_script(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    return Path(path).read_text(encoding="utf-8")


async def review(controller: StageController, auto_publish: bool) -> None:
    """Human confirmation at review; declining leaves the run parked."""
    if controller.stage != Stage.REVIEW:
        return
    if not controller.run.assets.audio_url:
        console.print("[yellow]Run stopped at review with missing assets; nothing to publish.[/yellow]")
        return
    if not auto_publish:
        if not sys.stdin.isatty():
            return
        if not await asyncio.to_thread(Confirm.ask, "Assets ready. Render and publish now?"):
            return
    await controller.publish()


async def run(args: argparse.Namespace, controller: StageController) -> None:
    if args.images:
        controller.add_custom_images(args.images)

    await controller.start(manual_topic=args.topic, custom_script=read_script(args.script_file))
    await review(controller, args.publish)

    scheduler = controller.scheduler
    if not args.once:
        # A retried research can park at review long after start() returned
        while True:
            await scheduler.drain()
            await review(controller, args.publish)
            if not scheduler.pending():
                return

    while scheduler.pending():
        if controller.stage in (Stage.COMPLETED, Stage.REVIEW):
            scheduler.cancel_all()
            await scheduler.drain()
            break
        await asyncio.sleep(ONCE_POLL_SECONDS)
    await review(controller, args.publish)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(level=args.log_level)
    config.ensure_directories()

    autonomous = config.AUTONOMOUS_MODE and not args.manual
    if (args.topic or args.script_file) and autonomous:
        console.print("[yellow]--topic/--script-file only apply with --manual; running autonomously.[/yellow]")

    controller = build_controller(autonomous)
    try:
        asyncio.run(run(args, controller))
    except KeyboardInterrupt:
        if controller.is_busy:
            console.print(
                f"[bold red]Pipeline interrupted while {controller.stage.value}. "
                "The current video was not finished.[/bold red]"
            )
        return 130

    final = controller.run
    if final.uploaded_id:
        console.print(f"[green]Uploaded: https://www.youtube.com/watch?v={final.uploaded_id}[/green]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
