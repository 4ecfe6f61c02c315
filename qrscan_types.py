"""
qrscan Types & Constants
========================

Value types, constants, enumerations, and error classes shared by every
qrscan module. This module has ZERO external dependencies beyond the
Python standard library.

  - Run configuration (immutable, built once by the CLI)
  - Decoded symbol metadata (version, grid size, EC level, mask)
  - Color specs in text and 8-bit RGBA form
  - Error tree for capture, decode, and export failures
"""

from enum import IntEnum, auto
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

# ═══════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════

PROGRAM_NAME = "qrscan"

# Export target meaning "write raw bytes to standard output"
STDOUT_TARGET = "-"

# Rotating progress indicator shown while the camera scans
PROGRESS = (".  ", ".. ", "...")
PROGRESS_LABEL = "Scanning via camera"
PROGRESS_CLEAR = "\r" + " " * 24 + "\r"

DEFAULT_INTERVAL_MS = 200
DEFAULT_FG = "#000"
DEFAULT_BG = "#fff"

# Camera fallback format: 640x480 MJPEG @ 30 fps
CAMERA_INDEX = 0
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
CAMERA_FPS = 30
CAMERA_FOURCC = "MJPG"

QUIET_ZONE_MODULES = 4
RASTER_MODULE_PIXELS = 8

# Format information: 15-bit BCH(15,5) codeword XOR mask
FORMAT_INFO_MASK = 0x5412
FORMAT_INFO_GENERATOR = 0x537
FORMAT_INFO_MAX_ERRORS = 3

MIN_GRID_SIZE = 21   # version 1
MAX_GRID_SIZE = 177  # version 40


# ═══════════════════════════════════════════════════════════════
# EXIT CODES
# ═══════════════════════════════════════════════════════════════

class ExitCode(IntEnum):
    """Process exit codes."""
    OK          = 0
    FAILURE     = 1  # decode, encode, color, camera, export
    IS_DIR      = 2  # supplied image path is a directory
    NOT_FOUND   = 3  # supplied image path does not exist


# ═══════════════════════════════════════════════════════════════
# ERROR CORRECTION LEVELS (two-bit codes from format information)
# ═══════════════════════════════════════════════════════════════

class ECLevel(IntEnum):
    """QR error correction level, valued by its format-information code."""
    M = 0b00  # ~15% recovery
    L = 0b01  # ~7% recovery
    H = 0b10  # ~30% recovery
    Q = 0b11  # ~25% recovery

    def __str__(self) -> str:
        return self.name


class CaptureState(IntEnum):
    """Capture loop states."""
    SCANNING  = auto()
    FOUND     = auto()
    EXHAUSTED = auto()


# ═══════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DecodedSymbol:
    """
    One successfully decoded QR symbol.

    Fields:
        payload   : decoded UTF-8 text
        version   : symbol version, 1..40
        grid_size : modules per side (17 + 4 * version)
        ec_level  : error correction level
        mask      : data mask pattern, 0..7
    """
    payload: str
    version: int
    grid_size: int
    ec_level: ECLevel
    mask: int

    def metadata_lines(self) -> List[str]:
        return [
            f"Version: {self.version}",
            f"Grid Size: {self.grid_size}",
            f"EC Level: {self.ec_level.name}",
            f"Mask: {self.mask}",
        ]


@dataclass(frozen=True)
class Frame:
    """A captured frame: luma plane for decoding, optional BGR for preview."""
    luma: Any
    color: Optional[Any] = None


@dataclass(frozen=True)
class ColorSpec:
    """A user color string and its parsed 8-bit RGBA value."""
    text: str
    rgba: Tuple[int, int, int, int]

    @property
    def rgba_float(self) -> Tuple[float, float, float, float]:
        return tuple(c / 255.0 for c in self.rgba)


@dataclass(frozen=True)
class ColorPair:
    """Dark/light roles after inversion has been applied."""
    dark: ColorSpec
    light: ColorSpec
    inverted: bool = False


@dataclass(frozen=True)
class PreviewConfig:
    """Terminal preview placement, in character cells."""
    x: int = 0
    y: int = 0
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class RunConfig:
    """
    Fully parsed command line. Created once, never mutated.

    `image` is None for the camera, STDOUT_TARGET for standard input,
    otherwise a path. Export targets are None (disabled), STDOUT_TARGET,
    or a path.
    """
    image: Optional[str] = None
    preview: bool = False
    preview_config: PreviewConfig = field(default_factory=PreviewConfig)
    metadata: bool = False
    qr: bool = False
    content: bool = True
    interval_ms: int = DEFAULT_INTERVAL_MS
    invert_colors: bool = False
    fg: str = DEFAULT_FG
    bg: str = DEFAULT_BG
    quiet_zone: bool = True
    ascii: Optional[str] = None
    svg: Optional[str] = None
    png: Optional[str] = None
    jpeg: Optional[str] = None
    verbosity: int = 0

    @property
    def live(self) -> bool:
        return self.image is None


# ═══════════════════════════════════════════════════════════════
# ERROR CLASSES
# ═══════════════════════════════════════════════════════════════

class QRScanError(Exception):
    """Base error for all qrscan operations."""
    pass

class NoSymbolError(QRScanError):
    """No usable symbol this attempt. Drives retry or exhaustion."""
    pass

class SymbolNotFound(NoSymbolError):
    """No candidate symbol was located in the frame."""
    pass

class DecodeError(NoSymbolError):
    """A symbol was located but could not be decoded."""
    pass

class ConfigError(QRScanError):
    """Invalid flag value or combination."""
    pass

class InvalidColor(ConfigError):
    """A color string could not be parsed."""
    pass

class CameraError(QRScanError):
    """Camera could not be opened or stopped delivering frames."""
    pass

class ImageReadError(QRScanError):
    """Input bytes are not a decodable image."""
    pass

class EncodeError(QRScanError):
    """The payload could not be re-encoded as a QR symbol."""
    pass

class ExportError(QRScanError):
    """One or more export branches failed to write."""

    def __init__(self, failures: List[Tuple[str, Exception]]):
        self.failures = failures
        detail = "; ".join(f"{target}: {err}" for target, err in failures)
        super().__init__(f"export failed: {detail}")


# ═══════════════════════════════════════════════════════════════
# UTILITY FUNCTIONS
# ═══════════════════════════════════════════════════════════════

def version_for_grid(grid_size: int) -> int:
    """Symbol version for a module grid side. Raises DecodeError if invalid."""
    if (grid_size < MIN_GRID_SIZE or grid_size > MAX_GRID_SIZE
            or (grid_size - 17) % 4 != 0):
        raise DecodeError(f"invalid grid size: {grid_size}")
    return (grid_size - 17) // 4


def is_stdout(target: Optional[str]) -> bool:
    return target == STDOUT_TARGET
