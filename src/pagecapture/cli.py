# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Capture CLI: capture and serve commands.

Usage:
    pagecapture capture URL [-o converted.pdf] [--work-dir DIR] [--headful] [--no-sandbox]
    pagecapture serve [--host HOST] [--port PORT] [...]
"""

from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
import tempfile
from pathlib import Path


def cmd_capture(args: argparse.Namespace) -> None:
    """Capture one document into a PDF file."""
    from .jobs import validate_target

    url = validate_target(args.url)
    output = Path(args.output)
    if output.parent and not output.parent.exists():
        output.parent.mkdir(parents=True, exist_ok=True)

    if args.work_dir:
        work_dir = Path(args.work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        asyncio.run(_capture(url, output, work_dir, headful=args.headful, no_sandbox=args.no_sandbox))
    else:
        with tempfile.TemporaryDirectory(prefix="pagecapture-") as tmp:
            asyncio.run(_capture(url, output, Path(tmp), headful=args.headful, no_sandbox=args.no_sandbox))


async def _capture(url: str, output: Path, work_dir: Path, *, headful: bool, no_sandbox: bool) -> None:
    from ._progress import print_step, status_spinner
    from .browser_session import BrowserConfig, create_session
    from .config import CaptureConfig
    from .pipeline import CapturePipeline, default_client_factory

    browser_config = BrowserConfig(headless=not headful, no_sandbox=no_sandbox)
    pipeline = CapturePipeline(
        CaptureConfig.from_env(),
        client_factory=default_client_factory(browser_config.user_agent),
    )

    with status_spinner(f"Capturing {url}..."):
        async with create_session(browser_config) as session:
            result = await pipeline.run(session, url, work_dir)

    shutil.copyfile(result.artifact_path, output)
    print(f"PDF saved to {output}")
    print(f"\nPages: {result.page_count} (captured {result.captured}, viewer reported {result.estimated_pages})")
    print(f"Outcome: {result.outcome}")
    if result.missing_pages:
        print(f"Missing pages: {', '.join(str(n) for n in result.missing_pages)}")
    for warning in result.warnings:
        print_step(f"Warning: {warning}")
    total = sum(result.timings.values())
    print_step(f"Elapsed: {total:.0f}ms")


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the HTTP server, forwarding any extra args to it."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Page Capture CLI",
        prog="pagecapture",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    _capture_epilog = """\
examples:
  %(prog)s https://drive.google.com/file/d/<id>/view           Save to ./converted.pdf
  %(prog)s https://drive.google.com/file/d/<id>/view -o doc.pdf
  %(prog)s URL --work-dir ./job --no-sandbox                    Keep page images
"""
    p_capture = subparsers.add_parser(
        "capture",
        help="Capture a document viewer URL into a PDF",
        epilog=_capture_epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_capture.add_argument("url", metavar="URL", help="Shared document URL")
    p_capture.add_argument("-o", "--output", default="converted.pdf", metavar="PATH", help="Output PDF path")
    p_capture.add_argument("--work-dir", metavar="DIR", help="Keep downloaded page images in DIR")
    p_capture.add_argument("--headful", action="store_true", help="Show the browser window")
    p_capture.add_argument("--no-sandbox", action="store_true", help="Launch Chromium without its sandbox")

    subparsers.add_parser(
        "serve",
        help="Start the HTTP server (extra args forwarded to the server)",
        add_help=False,
    )

    commands = {"capture": cmd_capture, "serve": cmd_serve}

    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    if args.command != "serve":
        from .logging_config import configure as configure_logging

        configure_logging(json_output=False, level="DEBUG" if args.verbose else "WARNING")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        from .problem_details import from_exception

        problem = from_exception(e)
        print(problem.to_cli_text(), file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
