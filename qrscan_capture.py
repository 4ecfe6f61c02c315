"""
qrscan Capture — Frame Sources & Capture Loop
=============================================

Where candidate images come from, and the loop that feeds them to the
decoder until one yields a symbol.

  StaticSource  : one frame from a file or from all of standard input
  CameraSource  : endless frames from a camera (OpenCV VideoCapture)
  TerminalPreview : draws camera frames on the terminal while scanning
  CaptureLoop   : SCANNING -> FOUND | EXHAUSTED

The loop is the same for both sources; only the source's
`retry_forever` flag decides whether a failed attempt ends the run.
"""

import io
import sys
import time
import shutil
import logging
from typing import Callable, Iterator, Optional, TextIO

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from qrscan_types import (
    STDOUT_TARGET, PROGRESS, PROGRESS_LABEL, PROGRESS_CLEAR,
    CAMERA_INDEX, CAMERA_WIDTH, CAMERA_HEIGHT, CAMERA_FPS, CAMERA_FOURCC,
    CaptureState, DecodedSymbol, Frame, PreviewConfig,
    CameraError, ImageReadError, NoSymbolError, SymbolNotFound,
)
from qrscan_decoder import SymbolDecoder

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# FRAME SOURCES
# ═══════════════════════════════════════════════════════════════

def load_luma(data: bytes) -> np.ndarray:
    """Decode image bytes of any Pillow-readable format into a luma buffer."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return np.asarray(img.convert("L"), dtype=np.uint8)
    except UnidentifiedImageError as exc:
        raise ImageReadError("unsupported or unrecognized image format") from exc
    except (OSError, SyntaxError, ValueError) as exc:
        raise ImageReadError(f"cannot decode image: {exc}") from exc


class StaticSource:
    """
    Yields exactly one frame, from a path or from standard input ("-").

    Usage:
        for frame in StaticSource("input.png").frames():
            ...
    """

    retry_forever = False

    def __init__(self, image: str, stdin: Optional[io.BufferedIOBase] = None):
        self.image = image
        self._stdin = stdin

    def read_bytes(self) -> bytes:
        if self.image == STDOUT_TARGET:
            stream = self._stdin or sys.stdin.buffer
            return stream.read()
        with open(self.image, "rb") as fh:
            return fh.read()

    def frames(self) -> Iterator[Frame]:
        yield Frame(luma=load_luma(self.read_bytes()))

    def __enter__(self) -> "StaticSource":
        return self

    def __exit__(self, *exc) -> None:
        pass


class CameraSource:
    """
    Endless frames from a camera device.

    The device is opened on entry and requested at 640x480 MJPG, 30 fps
    (drivers may pick something else). A failed read is fatal; a camera
    that hiccups is indistinguishable from one that went away.

    Usage:
        with CameraSource() as camera:
            for frame in camera.frames():
                ...
    """

    retry_forever = True

    def __init__(self, index: int = CAMERA_INDEX,
                 width: int = CAMERA_WIDTH, height: int = CAMERA_HEIGHT,
                 fps: int = CAMERA_FPS, fourcc: str = CAMERA_FOURCC):
        self.index = index
        self.width = width
        self.height = height
        self.fps = fps
        self.fourcc = fourcc
        self._capture = None

    def open(self) -> None:
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraError(f"cannot open camera {self.index}")

        capture.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*self.fourcc))
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        capture.set(cv2.CAP_PROP_FPS, self.fps)
        logger.debug("camera %d opened (%dx%d %s @ %d fps requested)",
                     self.index, self.width, self.height, self.fourcc, self.fps)
        self._capture = capture

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.debug("camera %d released", self.index)

    def frames(self) -> Iterator[Frame]:
        if self._capture is None:
            self.open()
        while True:
            ok, image = self._capture.read()
            if not ok or image is None:
                raise CameraError(f"cannot read frame from camera {self.index}")
            if image.ndim == 2:
                yield Frame(luma=image)
            else:
                yield Frame(luma=cv2.cvtColor(image, cv2.COLOR_BGR2GRAY), color=image)

    def __enter__(self) -> "CameraSource":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# ═══════════════════════════════════════════════════════════════
# TERMINAL PREVIEW
# ═══════════════════════════════════════════════════════════════

class TerminalPreview:
    """
    Draws a frame with 24-bit ANSI colors, two pixel rows per text cell.

    The cursor is moved to the absolute cell (x, y) first. Width and
    height are in cells; whichever is missing follows the frame's aspect
    ratio within the terminal size.
    """

    UPPER_HALF = "▀"

    def __init__(self, config: PreviewConfig, stream: Optional[TextIO] = None):
        self.config = config
        self.stream = stream

    def cell_size(self, image_w: int, image_h: int) -> tuple:
        width, height = self.config.width, self.config.height
        if width and height:
            return width, height

        columns, lines = shutil.get_terminal_size()
        max_w = max(1, columns - self.config.x)
        max_h = max(1, lines - max(0, self.config.y))
        # one cell is one pixel wide and two pixels tall
        if width:
            return width, max(1, round(width * image_h / image_w / 2))
        if height:
            return max(1, round(height * 2 * image_w / image_h)), height

        width = max_w
        height = max(1, round(width * image_h / image_w / 2))
        if height > max_h:
            height = max_h
            width = max(1, round(height * 2 * image_w / image_h))
        return width, height

    def render(self, frame: Frame) -> str:
        if frame.color is not None:
            rgb = cv2.cvtColor(frame.color, cv2.COLOR_BGR2RGB)
        else:
            rgb = np.stack([frame.luma] * 3, axis=-1)

        image_h, image_w = rgb.shape[:2]
        width, height = self.cell_size(image_w, image_h)
        pixels = np.asarray(
            Image.fromarray(rgb).resize((width, height * 2), Image.Resampling.BILINEAR),
            dtype=np.uint8,
        )

        lines = []
        for row in range(height):
            line = [f"\x1b[{max(0, self.config.y) + row + 1};{self.config.x + 1}H"]
            for col in range(width):
                tr, tg, tb = pixels[row * 2, col]
                br, bg, bb = pixels[row * 2 + 1, col]
                line.append(f"\x1b[38;2;{tr};{tg};{tb}m\x1b[48;2;{br};{bg};{bb}m"
                            f"{self.UPPER_HALF}")
            line.append("\x1b[0m")
            lines.append("".join(line))
        return "".join(lines)

    def show(self, frame: Frame) -> None:
        stream = self.stream or sys.stderr
        stream.write(self.render(frame))
        stream.flush()


# ═══════════════════════════════════════════════════════════════
# CAPTURE LOOP
# ═══════════════════════════════════════════════════════════════

class CaptureLoop:
    """
    Drives a frame source until one decode attempt succeeds.

    On a failed attempt the loop sleeps `interval_ms` once. A source with
    `retry_forever` False then ends the run (EXHAUSTED, error re-raised);
    a live source stays SCANNING and shows either the preview or the
    rotating progress indicator on `err`.

    Usage:
        loop = CaptureLoop(source, SymbolDecoder(), interval_ms=200)
        symbol = loop.run()
    """

    def __init__(self, source, decoder: SymbolDecoder, interval_ms: int,
                 preview: Optional[TerminalPreview] = None,
                 err: Optional[TextIO] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.source = source
        self.decoder = decoder
        self.interval_ms = interval_ms
        self.preview = preview
        self.err = err
        self.sleep = sleep
        self.state = CaptureState.SCANNING
        self.attempts = 0
        self.preview_shown = False

    def run(self) -> DecodedSymbol:
        err = self.err or sys.stderr
        spinner = 0
        indicator_shown = False
        self.state = CaptureState.SCANNING

        for frame in self.source.frames():
            self.attempts += 1
            try:
                symbol = self.decoder.decode(frame.luma)
            except NoSymbolError as exc:
                logger.debug("attempt %d: %s (%s)", self.attempts,
                             type(exc).__name__, exc)
                self.sleep(self.interval_ms / 1000.0)
                if not self.source.retry_forever:
                    self.state = CaptureState.EXHAUSTED
                    raise

                if self.preview is not None:
                    self.preview.show(frame)
                    self.preview_shown = True
                else:
                    err.write(f"\r{PROGRESS_LABEL}{PROGRESS[spinner]}")
                    err.flush()
                    spinner = (spinner + 1) % len(PROGRESS)
                    indicator_shown = True
                continue

            if indicator_shown:
                err.write(PROGRESS_CLEAR)
                err.flush()
            self.state = CaptureState.FOUND
            logger.debug("symbol found after %d attempt(s)", self.attempts)
            return symbol

        self.state = CaptureState.EXHAUSTED
        raise SymbolNotFound("failed to read")
