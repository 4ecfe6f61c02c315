"""
qrscan Decoder — Single Decode Attempt
======================================

Finds QR symbols in one luma PixelBuffer and decodes the first one.

Localization and error correction are OpenCV's (cv2.QRCodeDetector).
Candidates are taken in the detector's own order and only index 0 is
decoded; a decode failure on it ends the attempt without trying the
others.

Structural metadata comes from the rectified module grid OpenCV returns
with the decoded text:
  - grid size  : side of the grid, in modules
  - version    : (grid size - 17) / 4
  - EC level   : top two data bits of the format information
  - mask       : low three data bits of the format information
"""

import logging
from typing import List, Tuple

import cv2
import numpy as np

from qrscan_types import (
    FORMAT_INFO_MASK, FORMAT_INFO_GENERATOR, FORMAT_INFO_MAX_ERRORS,
    DecodedSymbol, ECLevel,
    DecodeError, SymbolNotFound,
    version_for_grid,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# FORMAT INFORMATION
# ═══════════════════════════════════════════════════════════════

def format_codeword(data: int) -> int:
    """Masked 15-bit BCH(15,5) codeword for 5 data bits (EC level << 3 | mask)."""
    rem = data
    for _ in range(10):
        rem = (rem << 1) ^ ((rem >> 9) * FORMAT_INFO_GENERATOR)
    return ((data << 10) | (rem & 0x3FF)) ^ FORMAT_INFO_MASK


# All 32 valid codewords, indexed by their data bits
FORMAT_CODEWORDS = [format_codeword(data) for data in range(32)]


def _format_bits(dark: np.ndarray) -> Tuple[int, int]:
    """
    Read both copies of the format information from a module grid.

    `dark` is a square boolean grid indexed [row, col]. Bit i of the
    first copy wraps the top-left finder; the second copy is split
    between the top-right and bottom-left finders.
    """
    size = dark.shape[0]
    first = 0
    second = 0

    for i in range(6):
        first |= int(dark[i, 8]) << i
    first |= int(dark[7, 8]) << 6
    first |= int(dark[8, 8]) << 7
    first |= int(dark[8, 7]) << 8
    for i in range(9, 15):
        first |= int(dark[8, 14 - i]) << i

    for i in range(8):
        second |= int(dark[8, size - 1 - i]) << i
    for i in range(8, 15):
        second |= int(dark[size - 15 + i, 8]) << i

    return first, second


def read_format_info(dark: np.ndarray) -> Tuple[ECLevel, int]:
    """
    Recover (EC level, mask) from a module grid.

    The grid and its transpose are both tried, since a mirrored symbol
    decodes just as well. The nearest valid codeword across both copies
    wins; more than FORMAT_INFO_MAX_ERRORS differing bits is a DecodeError.
    """
    best_data = None
    best_distance = 16

    for grid in (dark, dark.T):
        for bits in _format_bits(grid):
            for data, codeword in enumerate(FORMAT_CODEWORDS):
                distance = bin(bits ^ codeword).count("1")
                if distance < best_distance:
                    best_data, best_distance = data, distance

    if best_data is None or best_distance > FORMAT_INFO_MAX_ERRORS:
        raise DecodeError("unreadable format information")

    return ECLevel(best_data >> 3), best_data & 0b111


def module_grid(straight: np.ndarray) -> np.ndarray:
    """
    Boolean dark-module grid from OpenCV's rectified symbol image.

    Polarity is taken from the top-left corner module, which belongs to
    a finder pattern and is dark in every valid symbol.
    """
    grid = np.asarray(straight)
    if grid.ndim == 3:
        grid = grid[:, :, 0]
    if grid.ndim != 2 or grid.shape[0] != grid.shape[1]:
        raise DecodeError(f"unexpected symbol grid shape: {grid.shape}")

    binary = grid >= 128
    return binary == binary[0, 0]


def read_metadata(payload: str, straight: np.ndarray) -> DecodedSymbol:
    """Build a DecodedSymbol from decoded text and its module grid."""
    dark = module_grid(straight)
    grid_size = dark.shape[0]
    version = version_for_grid(grid_size)
    ec_level, mask = read_format_info(dark)
    return DecodedSymbol(payload=payload, version=version,
                         grid_size=grid_size, ec_level=ec_level, mask=mask)


# ═══════════════════════════════════════════════════════════════
# DECODER
# ═══════════════════════════════════════════════════════════════

class SymbolDecoder:
    """
    One-shot QR decode over a luma PixelBuffer.

    Usage:
        decoder = SymbolDecoder()
        symbol = decoder.decode(luma)    # DecodedSymbol
        symbol.payload, symbol.version, symbol.ec_level
    """

    def __init__(self):
        self._detector = cv2.QRCodeDetector()

    def locate(self, luma: np.ndarray) -> List[np.ndarray]:
        """
        Candidate symbol corners, in the detector's own order.

        Each candidate keeps the detector's (1, 4, 2) float32 corner
        layout, which is what `decode` accepts back. The multi-symbol
        detector runs first; the single-symbol detector is consulted
        only when it reports nothing.
        """
        try:
            found, points = self._detector.detectMulti(luma)
            if not found or points is None or len(points) == 0:
                found, points = self._detector.detect(luma)
        except cv2.error as exc:
            raise DecodeError(f"symbol detection failed: {exc}") from exc
        if not found or points is None or len(points) == 0:
            return []
        points = np.asarray(points, dtype=np.float32).reshape(-1, 4, 2)
        return [quad.reshape(1, 4, 2) for quad in points]

    def decode(self, luma: np.ndarray) -> DecodedSymbol:
        """
        Decode the first candidate in `luma`.

        Raises:
            SymbolNotFound: nothing was located (soft failure).
            DecodeError: candidate 0 was located but did not decode.
        """
        luma = _as_luma(luma)
        candidates = self.locate(luma)
        if not candidates:
            logger.debug("no symbol located in %dx%d frame",
                         luma.shape[1], luma.shape[0])
            raise SymbolNotFound("failed to read")

        logger.debug("%d candidate(s) located, decoding index 0", len(candidates))
        try:
            text, straight = self._detector.decode(luma, candidates[0])
        except cv2.error as exc:
            logger.debug("candidate 0 rejected by the decoder: %s", exc)
            raise DecodeError("failed to decode symbol") from exc
        if not text:
            logger.debug("candidate 0 did not decode")
            raise DecodeError("failed to decode symbol")
        if straight is None or np.asarray(straight).size == 0:
            raise DecodeError("symbol grid unavailable")

        try:
            return read_metadata(text, straight)
        except DecodeError as exc:
            logger.debug("metadata of candidate 0 unreadable: %s", exc)
            raise


def _as_luma(buffer: np.ndarray) -> np.ndarray:
    """Validate a PixelBuffer: 2-D, non-empty, contiguous uint8."""
    luma = np.asarray(buffer)
    if luma.ndim == 3:
        luma = cv2.cvtColor(luma, cv2.COLOR_BGR2GRAY)
    if luma.ndim != 2 or luma.shape[0] == 0 or luma.shape[1] == 0:
        raise ValueError(f"invalid pixel buffer shape: {luma.shape}")
    return np.ascontiguousarray(luma, dtype=np.uint8)
