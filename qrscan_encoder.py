"""
qrscan Encoder — Export Pipeline
================================

Re-renders a decoded payload into every output the run asked for:

  1. terminal glyphs   (--qr)        half blocks, two module rows per line
  2. metadata          (--metadata)  version, grid size, EC level, mask
  3. payload text      (default)     suppressed by --no-content
  4. SVG               (--svg)       vector, float RGBA colors
  5. ASCII art         (--ascii)     two characters per module
  6. PNG, JPEG         (--png/--jpeg) raster, 8-bit RGBA colors

Branches run in that order. Blank separator lines between the terminal
branches depend on which earlier ones produced output. Each file branch
resolves its own target: "-" means the output stream, anything else is
a path that gets overwritten.

Symbols are re-encoded with the `qrcode` package (EC level M, smallest
fitting version); rasters go through Pillow.
"""

import io
import logging
from typing import BinaryIO, Callable, List, Optional, Tuple

import numpy as np
import qrcode
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgPathImage
from PIL import Image

from qrscan_types import (
    QUIET_ZONE_MODULES, RASTER_MODULE_PIXELS,
    ColorPair, ColorSpec, DecodedSymbol, RunConfig,
    EncodeError, ExportError,
    is_stdout,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# SYMBOL ENCODING
# ═══════════════════════════════════════════════════════════════

def build_qr(payload: str, quiet_zone: bool = True) -> qrcode.QRCode:
    """Encode `payload` at EC level M, with or without the quiet zone."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        border=QUIET_ZONE_MODULES if quiet_zone else 0,
    )
    qr.add_data(payload)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        raise EncodeError(f"cannot encode payload: {exc}") from exc
    return qr


# ═══════════════════════════════════════════════════════════════
# RENDERERS
# ═══════════════════════════════════════════════════════════════

def render_glyphs(qr: qrcode.QRCode, inverted: bool = False) -> str:
    """
    Half-block glyph grid for a terminal.

    Not inverted, light modules are drawn as blocks, which reads
    correctly on a dark terminal; inverted, dark modules are. Empty
    cells are plain spaces.
    """
    buf = io.StringIO()
    qr.print_ascii(out=buf, invert=not inverted)
    return buf.getvalue().replace("\xa0", " ")


def render_ascii(qr: qrcode.QRCode) -> bytes:
    """Two characters per module, one line per module row, no trailing newline."""
    rows = ["".join("##" if dark else "  " for dark in row)
            for row in qr.get_matrix()]
    return "\n".join(rows).encode("ascii")


def _svg_paint(color: ColorSpec) -> Tuple[str, str]:
    """(fill, opacity) attribute values from a color's float RGBA."""
    r, g, b, a = color.rgba_float
    fill = f"rgb({r * 100:g}%,{g * 100:g}%,{b * 100:g}%)"
    return fill, f"{a:g}"


def svg_image_factory(colors: ColorPair) -> type:
    """SvgPathImage subclass painting modules dark and the canvas light."""
    dark_fill, dark_opacity = _svg_paint(colors.dark)
    light_fill, light_opacity = _svg_paint(colors.light)

    class ColoredSvgPathImage(SvgPathImage):
        background = None
        QR_PATH_STYLE = {
            "fill": dark_fill,
            "fill-opacity": dark_opacity,
            "fill-rule": "nonzero",
            "stroke": "none",
        }

        def _svg(self, *args, **kwargs):
            svg = super()._svg(*args, **kwargs)
            svg.append(svg.makeelement("rect", {
                "x": "0", "y": "0", "width": "100%", "height": "100%",
                "fill": light_fill, "fill-opacity": light_opacity,
            }))
            return svg

    return ColoredSvgPathImage


def render_svg(qr: qrcode.QRCode, colors: ColorPair) -> bytes:
    img = qr.make_image(image_factory=svg_image_factory(colors))
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def render_raster(qr: qrcode.QRCode, colors: ColorPair,
                  module_pixels: int = RASTER_MODULE_PIXELS) -> Image.Image:
    """RGBA image, `module_pixels` square pixels per module."""
    dark = np.array(qr.get_matrix(), dtype=bool)
    pixels = np.where(dark[..., None],
                      np.array(colors.dark.rgba, dtype=np.uint8),
                      np.array(colors.light.rgba, dtype=np.uint8)).astype(np.uint8)
    pixels = pixels.repeat(module_pixels, axis=0).repeat(module_pixels, axis=1)
    return Image.fromarray(pixels)


def render_png(qr: qrcode.QRCode, colors: ColorPair) -> bytes:
    buf = io.BytesIO()
    render_raster(qr, colors).save(buf, format="PNG")
    return buf.getvalue()


def render_jpeg(qr: qrcode.QRCode, colors: ColorPair) -> bytes:
    """JPEG has no alpha channel; the raster is flattened to RGB."""
    buf = io.BytesIO()
    render_raster(qr, colors).convert("RGB").save(buf, format="JPEG")
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════
# TARGETS
# ═══════════════════════════════════════════════════════════════

def write_target(target: str, data: bytes, out: BinaryIO) -> None:
    """Write to the output stream for "-", otherwise overwrite the path."""
    if is_stdout(target):
        out.write(data)
        out.flush()
    else:
        with open(target, "wb") as fh:
            fh.write(data)


# ═══════════════════════════════════════════════════════════════
# EXPORT PIPELINE
# ═══════════════════════════════════════════════════════════════

class SymbolExporter:
    """
    Runs every enabled output branch for one decoded symbol.

    Terminal text and "-" exports share the binary stream `out`, so their
    bytes appear in branch order. A binary export to "-" next to the text
    branches will interleave with them; pair it with --no-content.

    Usage:
        exporter = SymbolExporter(config, resolve_colors(...), sys.stdout.buffer)
        exporter.run(symbol)
    """

    def __init__(self, config: RunConfig, colors: ColorPair, out: BinaryIO):
        self.config = config
        self.colors = colors
        self.out = out
        self._qr: Optional[qrcode.QRCode] = None
        self._payload: Optional[str] = None

    def symbol_qr(self, payload: str) -> qrcode.QRCode:
        """Re-encoded symbol, built on first use and shared by all branches."""
        if self._qr is None or self._payload != payload:
            self._qr = build_qr(payload, self.config.quiet_zone)
            self._payload = payload
        return self._qr

    def run(self, symbol: DecodedSymbol, after_preview: bool = False) -> None:
        """
        Run all branches in order.

        Raises:
            EncodeError: the payload could not be re-encoded.
            ExportError: at least one file branch failed to write; every
                other enabled branch has still run.
        """
        config = self.config
        printed = after_preview

        # ── 1. Terminal glyphs ──
        if config.qr:
            if printed:
                self._print("")
            self._write_text(render_glyphs(self.symbol_qr(symbol.payload),
                                           self.colors.inverted))
            printed = True

        # ── 2. Metadata ──
        if config.metadata:
            if printed:
                self._print("")
            for line in symbol.metadata_lines():
                self._print(line)
            printed = True

        # ── 3. Payload ──
        if config.content:
            if printed:
                self._print("")
            self._print(symbol.payload)

        # ── 4-6. Files ──
        failures = []
        for kind, target, render in self._file_branches():
            if target is None:
                continue
            data = render(self.symbol_qr(symbol.payload))
            try:
                write_target(target, data, self.out)
            except OSError as exc:
                failures.append((target, exc))
                continue
            logger.info("wrote %d bytes of %s to %s", len(data), kind,
                        "stdout" if is_stdout(target) else target)

        if failures:
            raise ExportError(failures)

    def _file_branches(self) -> List[Tuple[str, Optional[str], Callable[[qrcode.QRCode], bytes]]]:
        colors = self.colors
        return [
            ("svg", self.config.svg, lambda qr: render_svg(qr, colors)),
            ("ascii", self.config.ascii, render_ascii),
            ("png", self.config.png, lambda qr: render_png(qr, colors)),
            ("jpeg", self.config.jpeg, lambda qr: render_jpeg(qr, colors)),
        ]

    def _print(self, line: str) -> None:
        self._write_text(line + "\n")

    def _write_text(self, text: str) -> None:
        self.out.write(text.encode("utf-8", errors="replace"))
        self.out.flush()
