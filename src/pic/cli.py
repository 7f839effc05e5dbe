from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .config import PERSISTED_KEYS, PicSettings, SettingsStore, cli_overrides_from_args
from .engine import SUPPORTED_FORMATS, encoder_available
from .logging import bind_run, configure
from .models import IngestFlags, OutcomeKind, Status
from .orchestrator import Orchestrator
from .utils import format_bytes, format_name


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_PREFLIGHT_FAILED = 3


def cmd_preflight() -> int:
    found = []
    for fmt in SUPPORTED_FORMATS:
        ok = encoder_available(fmt)
        logger.info(f"{format_name('image/' + fmt)} encoder: {'YES' if ok else 'NO'}")
        if ok:
            found.append(fmt)
    if not found:
        logger.error("No usable encoder. Install a Pillow build with WebP or AVIF support.")
        return EXIT_PREFLIGHT_FAILED
    return EXIT_OK


def _report_flags(flags: IngestFlags) -> None:
    if flags.duplicate_found:
        logger.info("Some images were already in the list and were skipped.")
    if flags.unsupported_found:
        logger.warning("Some files were not added because their format isn't supported.")
    if flags.saw_nested_directory:
        logger.warning("Folders inside the selected folders were not scanned.")
    if flags.result_was_empty:
        logger.info("No images found.")


async def _watch_progress(orch: Orchestrator, interval: float = 0.25) -> None:
    last = None
    while True:
        p = orch.progress
        if p.status is not Status.IDLE and (p.count, p.total) != last:
            last = (p.count, p.total)
            print(
                f"\r{p.status.value}: {p.count}/{p.total} ({p.ratio:.0%})",
                end="",
                file=sys.stderr,
                flush=True,
            )
        await asyncio.sleep(interval)


async def _ask(total: int) -> bool:
    reply = await asyncio.to_thread(input, f"{total:,} images found. Continue? [y/N] ")
    return reply.strip().lower() in {"y", "yes"}


async def run_convert(orch: Orchestrator, paths: List[str]) -> int:
    watcher = asyncio.create_task(_watch_progress(orch))
    try:
        flags = await orch.ingest(paths)
        _report_flags(flags)
        if flags.declined or not orch.standby:
            return EXIT_OK
        originals = dict(orch.standby)
        outcome = await orch.convert()
    finally:
        watcher.cancel()
        print("", file=sys.stderr)

    for entry_id in outcome.converted_ids:
        done = orch.complete[entry_id]
        before = originals[entry_id]
        line = (
            f"{done.file_name}: {format_bytes(before.size_before)} ({format_name(before.mime_type)})"
            f" -> {format_bytes(done.size_after)}"
        )
        if done.saved_bytes > 0:
            line += f", saved {format_bytes(done.saved_bytes)}"
        print(line)
    for entry in orch.standby.values():
        print(f"{entry.file_name}: not converted")

    if outcome.kind is OutcomeKind.SUCCESS:
        logger.success(f"Converted {outcome.converted} image(s).")
        return EXIT_OK
    if outcome.kind is OutcomeKind.PARTIAL:
        logger.warning(f"Converted {outcome.converted} of {outcome.requested} image(s). {outcome.message or ''}")
        return EXIT_PARTIAL
    logger.error(f"Conversion failed: {outcome.message}")
    return EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="python-image-converter")
    p.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ~/.config/python-image-converter/config.toml)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Console log level (DEBUG, INFO, WARNING, ERROR)",
    )
    p.add_argument(
        "--log-json",
        dest="log_json",
        default=None,
        help="Path to write JSON lines log (structured events)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("preflight", help="Check WebP/AVIF encoder availability")

    p_convert = sub.add_parser("convert", help="Convert image files and folders (one level deep)")
    p_convert.add_argument("paths", nargs="+", help="Image files or folders")
    p_convert.add_argument("--format", choices=SUPPORTED_FORMATS, default=None, help="Target format (default from settings)")
    p_convert.add_argument("--quality", type=int, default=None, help="Quality 1..100 (default from settings)")
    p_convert.add_argument("--output", dest="output_dir", default=None, help="Output directory (default from settings)")
    p_convert.add_argument("--workers", type=int, default=None, help="Parallel encode workers (default: CPU cores)")
    p_convert.add_argument("--yes", "-y", action="store_true", help="Do not ask before large batches")
    p_convert.add_argument(
        "--save",
        action="store_true",
        help="Persist --format/--quality/--output to the config file",
    )

    p_cfg = sub.add_parser("config", help="Print the effective configuration")
    p_cfg.add_argument("--write", action="store_true", help="Write it to the config file")

    args = p.parse_args(argv)
    overrides = cli_overrides_from_args(args)
    config_path = Path(args.config_path).expanduser() if args.config_path else None
    cfg = PicSettings.load(config_path=config_path, overrides=overrides)

    configure(cfg.log_level, cfg.log_json)
    bind_run()

    if args.cmd == "preflight":
        return cmd_preflight()
    if args.cmd == "config":
        if args.write:
            written = cfg.write(config_path)
            print(f"Config written to: {written}")
        else:
            print(cfg.to_toml(), end="")
        return EXIT_OK
    if args.cmd == "convert":
        if not cfg.output_dir:
            logger.error("No output directory. Pass --output or set output_dir in the config.")
            return EXIT_FAILED
        if args.save:
            settings = SettingsStore(cfg.config_path)
            for key in PERSISTED_KEYS:
                settings.set(key, getattr(cfg, key))
        orch = Orchestrator.from_settings(cfg, persist=False, confirm=None if args.yes else _ask)
        try:
            return asyncio.run(run_convert(orch, args.paths))
        finally:
            orch.close()
    p.error("unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
