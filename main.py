from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

# Ensure local src/ is importable when running from project root
ROOT = Path(__file__).parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Prefer line-buffered output so progress prints appear promptly under wrappers
try:
    sys.stdout.reconfigure(line_buffering=True)
    sys.stderr.reconfigure(line_buffering=True)
except Exception:
    pass

from pau.catalog import (  # noqa: E402
    OutputFormat,
    Quality,
    compatible_containers,
    layouts_in_order,
)
from pau.config import PauSettings, cli_overrides_from_args  # noqa: E402
from pau.encoder import cmd_to_string  # noqa: E402
from pau.errors import UpmixError  # noqa: E402
from pau.events import RunSnapshot  # noqa: E402
from pau.ffmpeg_check import locate_ffmpeg, probe_ffmpeg  # noqa: E402
from pau.jobs import JobStatus  # noqa: E402
from pau.logging import setup_console  # noqa: E402
from pau.orchestrator import Upmixer  # noqa: E402
from pau.scanner import expand_sources  # noqa: E402
from pau.separator import probe_separator  # noqa: E402


EXIT_OK = 0
EXIT_WITH_FILE_ERRORS = 2
EXIT_PREFLIGHT_FAILED = 3
EXIT_CANCELLED = 130


def configure_logging(log_level: str = "INFO", log_json_path: Optional[str] = None) -> None:
    """Configure Loguru for human console output and optional JSON lines file.

    log_level: Console log level (e.g., INFO, DEBUG, WARNING).
    log_json_path: If provided, write structured JSON lines to this path.
    """
    setup_console(log_level, json_path=log_json_path)


def cmd_preflight(cfg: PauSettings) -> int:
    st = probe_ffmpeg(locate_ffmpeg(cfg.ffmpeg_path))
    if not st.available:
        logger.error("ffmpeg: NOT FOUND")
        if st.error:
            logger.error(st.error)
        return EXIT_PREFLIGHT_FAILED
    logger.info(f"ffmpeg: {st.ffmpeg_path}")
    logger.info(f"version: {st.ffmpeg_version}")
    logger.info(f"flac: {'YES' if st.has_flac else 'NO'}  alac: {'YES' if st.has_alac else 'NO'}")
    logger.info(f"truehd: {'YES' if st.has_truehd else 'NO'}  dca: {'YES' if st.has_dca else 'NO'}")

    sep = probe_separator(cfg.separator_cmd)
    if sep.available:
        logger.info(f"separator: {' '.join(sep.command or [])} (model {cfg.separator_model})")
    else:
        logger.warning(f"separator: NOT FOUND ({sep.error}); AI mode will fall back to standard upmix")
    return EXIT_OK


def cmd_formats() -> int:
    for fmt in OutputFormat:
        layouts = ", ".join(layout.label for layout in layouts_in_order(fmt))
        containers = ", ".join(c.display_name for c in compatible_containers(fmt))
        print(f"{fmt.display_name:<7} layouts: {layouts:<22} containers: {containers}")
    print("quality (PCM only): " + ", ".join(q.value for q in Quality))
    return EXIT_OK


def _print_snapshot(snap: RunSnapshot) -> None:
    logger.info(f"[{snap.completed}/{snap.total}] {snap.progress:.0%} {snap.status}")


def cmd_upmix(cfg: PauSettings, sources: list[str], *, dry_run: bool) -> int:
    files = expand_sources(sources)
    if not files:
        logger.error("No input files")
        return EXIT_WITH_FILE_ERRORS

    upmixer = Upmixer.from_settings(cfg)
    for f in files:
        upmixer.add_file(f)
    run_cfg = cfg.run_config()

    if dry_run:
        try:
            for job, cmd in upmixer.plan(run_cfg):
                print(f"{job.display_name}: {cmd_to_string(cmd)}")
        except UpmixError as e:
            logger.error(e.user_message)
            return EXIT_PREFLIGHT_FAILED
        return EXIT_OK

    last_status = {"text": None}

    def on_snapshot(snap: RunSnapshot) -> None:
        if snap.status != last_status["text"]:
            last_status["text"] = snap.status
            _print_snapshot(snap)

    upmixer.bus.subscribe(on_snapshot)
    try:
        upmixer.start(run_cfg)
    except UpmixError as e:
        logger.error(e.user_message)
        return EXIT_PREFLIGHT_FAILED

    try:
        while not upmixer.wait(0.2):
            pass
    except KeyboardInterrupt:
        logger.warning("Interrupted; cancelling current job")
        upmixer.cancel()
        upmixer.wait()

    snap = upmixer.snapshot()
    for job in snap.jobs:
        line = f"{job.status.value:<14} {job.display_name}"
        if job.status is JobStatus.FAILED and job.reason:
            line += f"\n{job.reason.rstrip()}"
        print(line)
    if any(j.status is JobStatus.CANCELLED for j in snap.jobs):
        return EXIT_CANCELLED
    if snap.error or any(j.status is JobStatus.FAILED for j in snap.jobs):
        return EXIT_WITH_FILE_ERRORS
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="python-audio-upmixer")
    # Config/Logging options (defaults resolved via PauSettings)
    p.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ~/.config/python-audio-upmixer/config.toml)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write current effective settings to the config file and exit",
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
    p.add_argument(
        "--ffmpeg",
        dest="ffmpeg_path",
        default=None,
        help="Explicit ffmpeg executable (checked before well-known locations and PATH)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("preflight", help="Check ffmpeg and stem separator availability")
    sub.add_parser("formats", help="List output formats with their layouts and containers")

    p_up = sub.add_parser("upmix", help="Upmix stereo files into a multichannel format")
    p_up.add_argument("sources", nargs="+", help="Input files and/or directories")
    p_up.add_argument("--out", dest="output_dir", default=None, help="Output directory (default from settings)")
    p_up.add_argument(
        "--format",
        dest="output_format",
        choices=[f.value for f in OutputFormat],
        default=None,
        help="Output format (default from settings: pcm)",
    )
    p_up.add_argument(
        "--layout",
        dest="channel_layout",
        default=None,
        help="Channel layout label: 2.0, 5.1, 7.1, 7.1.4 (corrected to the format's 7.1 when unavailable)",
    )
    p_up.add_argument(
        "--quality",
        choices=[q.value for q in Quality],
        default=None,
        help="PCM bit depth / kHz; other formats use fixed parameters",
    )
    p_up.add_argument(
        "--container",
        default=None,
        help="flac, alac, wav, aiff, dts, truehd (corrected to the first compatible one)",
    )
    ai_group = p_up.add_mutually_exclusive_group()
    ai_group.add_argument(
        "--ai",
        dest="ai_mode",
        action="store_const",
        const=True,
        default=None,
        help="Separate stems first for 7.1.4 layouts (falls back per file on failure)",
    )
    ai_group.add_argument("--no-ai", dest="ai_mode", action="store_const", const=False, help="Disable stem separation")
    p_up.add_argument("--scratch-dir", dest="scratch_dir", default=None, help="Parent directory for stem scratch dirs")
    p_up.add_argument("--dry-run", action="store_true", help="Print the ffmpeg commands and exit")

    args = p.parse_args(argv)
    overrides = cli_overrides_from_args(args)
    try:
        cfg = PauSettings.load(
            config_path=Path(args.config_path).expanduser() if args.config_path else None,
            overrides=overrides,
        )
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return EXIT_PREFLIGHT_FAILED

    if args.write_config:
        written = cfg.write(Path(args.config_path).expanduser() if args.config_path else None)
        print(f"Config written to: {written}")
        return EXIT_OK

    configure_logging(cfg.log_level, cfg.log_json)
    if args.cmd == "preflight":
        return cmd_preflight(cfg)
    if args.cmd == "formats":
        return cmd_formats()
    if args.cmd == "upmix":
        try:
            return cmd_upmix(cfg, args.sources, dry_run=args.dry_run)
        except ValueError as e:
            logger.error(str(e))
            return EXIT_PREFLIGHT_FAILED
    p.error("unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
