#!/usr/bin/env python3
"""
qrscan — scan a QR code in the terminal using the system camera or a given image.

Usage:
    qrscan                          # scan via camera
    qrscan /path/to/input.png       # scan a file
    cat input.png | qrscan -        # scan standard input
    qrscan input.png --qr --metadata --svg out.svg --png -
"""

import os
import sys
import logging
import argparse
from typing import BinaryIO, List, Optional, TextIO

from qrscan_types import (
    PROGRAM_NAME, STDOUT_TARGET, DEFAULT_INTERVAL_MS, DEFAULT_FG, DEFAULT_BG,
    ExitCode, PreviewConfig, RunConfig,
    QRScanError,
)
from qrscan_colors import resolve_colors
from qrscan_decoder import SymbolDecoder
from qrscan_capture import CameraSource, CaptureLoop, StaticSource, TerminalPreview
from qrscan_encoder import SymbolExporter

__version__ = "0.1.9"


# ═══════════════════════════════════════════════════════════════
# ARGUMENTS
# ═══════════════════════════════════════════════════════════════

def _non_negative(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {value}")
    return number


def _positive(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Scan a QR code in the terminal using the system camera or a given image",
    )
    parser.add_argument(
        "image", nargs="?",
        help="Path to the image to scan, or '-' to read standard input. "
             "If not specified, the system camera will be used",
    )
    parser.add_argument("-p", "--preview", action="store_true",
                        help="Preview the camera on the terminal (if compatible)")
    parser.add_argument("--preview-x", type=_non_negative, default=0,
                        help="Preview display's x coordinate (works with --preview)")
    parser.add_argument("--preview-y", type=int, default=0,
                        help="Preview display's y coordinate (works with --preview)")
    parser.add_argument("--preview-w", type=_positive,
                        help="Preview width (works with --preview)")
    parser.add_argument("--preview-h", type=_positive,
                        help="Preview height (works with --preview)")
    parser.add_argument("-m", "--metadata", action="store_true",
                        help="Print metadata")
    parser.add_argument("--qr", action="store_true",
                        help="Print the QR code")
    parser.add_argument("-n", "--no-content", action="store_true",
                        help="Do not print the content")
    parser.add_argument("-i", "--interval", type=_non_negative, default=DEFAULT_INTERVAL_MS,
                        help="Interval between scans in milliseconds (default: %(default)s)")
    parser.add_argument("--invert-colors", action="store_true",
                        help="Invert the QR code colors")
    parser.add_argument("--fg", default=DEFAULT_FG,
                        help="QR code foreground color when exporting (default: %(default)s)")
    parser.add_argument("--bg", default=DEFAULT_BG,
                        help="QR code background color when exporting (default: %(default)s)")
    parser.add_argument("--no-quiet-zone", action="store_true",
                        help="Do not add quiet zone to the QR code")
    parser.add_argument("--ascii", metavar="PATH",
                        help="Export the QR code as ascii text to the given path ('-' for stdout)")
    parser.add_argument("--svg", metavar="PATH",
                        help="Export the QR code as svg image to the given path ('-' for stdout)")
    parser.add_argument("--png", metavar="PATH",
                        help="Export the QR code as png image to the given path ('-' for stdout)")
    parser.add_argument("--jpeg", metavar="PATH",
                        help="Export the QR code as jpeg image to the given path ('-' for stdout)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log more detail to stderr (-v info, -vv debug)")
    parser.add_argument("-V", "--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        image=args.image,
        preview=args.preview,
        preview_config=PreviewConfig(
            x=args.preview_x, y=args.preview_y,
            width=args.preview_w, height=args.preview_h,
        ),
        metadata=args.metadata,
        qr=args.qr,
        content=not args.no_content,
        interval_ms=args.interval,
        invert_colors=args.invert_colors,
        fg=args.fg,
        bg=args.bg,
        quiet_zone=not args.no_quiet_zone,
        ascii=args.ascii,
        svg=args.svg,
        png=args.png,
        jpeg=args.jpeg,
        verbosity=args.verbose,
    )


def setup_logging(verbosity: int = 0, stream: Optional[TextIO] = None) -> None:
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(verbosity, 2)]
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=stream or sys.stderr,
        force=True,
    )


# ═══════════════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════════════

def check_image_path(image: Optional[str], err: TextIO) -> ExitCode:
    """Reject a missing or directory path before any capture work."""
    if image is None or image == STDOUT_TARGET:
        return ExitCode.OK
    if not os.path.exists(image):
        print(f"error: {PROGRAM_NAME}: {image}: No such file", file=err)
        return ExitCode.NOT_FOUND
    if os.path.isdir(image):
        print(f"error: {PROGRAM_NAME}: cannot scan {image}: Is a directory", file=err)
        return ExitCode.IS_DIR
    return ExitCode.OK


def scan(config: RunConfig, out: BinaryIO, err: TextIO,
         stdin: Optional[BinaryIO] = None, sleep=None) -> ExitCode:
    """Capture, decode and export once. Returns the process exit code."""
    code = check_image_path(config.image, err)
    if code != ExitCode.OK:
        return code

    try:
        colors = resolve_colors(config.fg, config.bg, config.invert_colors)

        if config.live:
            source = CameraSource()
        else:
            source = StaticSource(config.image, stdin=stdin)

        preview = None
        if config.preview and config.live:
            preview = TerminalPreview(config.preview_config, stream=err)

        loop_kwargs = {"sleep": sleep} if sleep is not None else {}
        with source:
            loop = CaptureLoop(source, SymbolDecoder(), config.interval_ms,
                               preview=preview, err=err, **loop_kwargs)
            symbol = loop.run()

        SymbolExporter(config, colors, out).run(symbol, after_preview=loop.preview_shown)
    except (QRScanError, OSError) as exc:
        print(f"error: {PROGRAM_NAME}: {exc}", file=err)
        return ExitCode.FAILURE

    return ExitCode.OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = build_config(args)
    setup_logging(config.verbosity)
    try:
        return int(scan(config, out=sys.stdout.buffer, err=sys.stderr))
    except KeyboardInterrupt:
        sys.stderr.write("\n")
        return 130


if __name__ == "__main__":
    sys.exit(main())
