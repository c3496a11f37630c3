"""
Error-diffusion dithering against a fixed palette.

Every kernel is described by data (taps, divisor, traversal) and run through a
single diffusion loop. Pixels are lists of Color and are replaced in place.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, MutableSequence, Sequence, Tuple

import numpy as np

from color_lib import BLACK, WHITE, Color, InvalidArgument, colors_to_array, mean_distance

__all__ = [
    'DitherMode',
    'Traversal',
    'DitherKernel',
    'KERNELS',
    'find_closest_color',
    'closest_indices',
    'dither',
    'monochrome_dither',
    'recolor',
    'BaseDitherStrategy',
    'NoDitherStrategy',
    'ErrorDiffusionStrategy',
    'MonochromeStrategy',
    'get_dither_strategy',
    'available_modes',
]

logger = logging.getLogger(__name__)

# Red channel values below this become black in monochrome mode, so 128 is black.
MONOCHROME_THRESHOLD = 129

# -------------------- Enumerations --------------------

class DitherMode(Enum):
    NONE = "none"
    FLOYD_STEINBERG = "floyd_steinberg"
    SIERRA_2 = "sierra_2"
    SIERRA_LITE = "sierra_lite"
    QUICK = "quick"
    BIDIRECTIONAL = "bidirectional"
    MONOCHROME_FS = "monochrome_fs"
    MONOCHROME_QUICK = "monochrome_quick"


class Traversal(Enum):
    FORWARD = "forward"    # left-to-right, top-to-bottom
    REVERSE = "reverse"    # right-to-left, bottom-to-top
    OUTWARD = "outward"    # forward from the middle + 1, then backward from the middle


# -------------------- Kernel descriptors --------------------

@dataclass(frozen=True)
class DitherKernel:
    """
    Error diffusion kernel.

    Taps are (dx, dy, weight) relative to the direction of travel: positive dx
    is the next pixel to be visited on the same row, positive dy the next row
    to be visited. Reverse traversal mirrors both.
    """
    name: str
    taps: Tuple[Tuple[int, int, int], ...]
    divisor: int
    traversal: Traversal = Traversal.FORWARD


FLOYD_STEINBERG = DitherKernel(
    "floyd_steinberg",
    taps=((1, 0, 7), (-1, 1, 3), (0, 1, 5), (1, 1, 1)),
    divisor=16,
)

SIERRA_2 = DitherKernel(
    "sierra_2",
    taps=(
        (1, 0, 4), (2, 0, 3),
        (-2, 1, 1), (-1, 1, 2), (0, 1, 3), (1, 1, 2), (2, 1, 1),
    ),
    divisor=16,
)

SIERRA_LITE = DitherKernel(
    "sierra_lite",
    taps=((1, 0, 2), (-1, 1, 1), (0, 1, 1)),
    divisor=4,
    traversal=Traversal.REVERSE,
)

# weights add up to 18 over a divisor of 16; the surplus is intentional
QUICK = DitherKernel(
    "quick",
    taps=(
        (1, 0, 4), (2, 0, 2),
        (-2, 1, 1), (-1, 1, 2), (0, 1, 2), (1, 1, 2), (2, 1, 1),
        (-1, 2, 2),
    ),
    divisor=16,
    traversal=Traversal.REVERSE,
)

BIDIRECTIONAL = DitherKernel(
    "bidirectional",
    taps=SIERRA_2.taps,
    divisor=16,
    traversal=Traversal.OUTWARD,
)

KERNELS: Dict[str, DitherKernel] = {
    k.name: k for k in (FLOYD_STEINBERG, SIERRA_2, SIERRA_LITE, QUICK, BIDIRECTIONAL)
}

MONOCHROME_KERNELS: Dict[str, DitherKernel] = {
    "floyd_steinberg": FLOYD_STEINBERG,
    "quick": QUICK,
}


# -------------------- Nearest color --------------------

def _check_palette(palette: Sequence[Color]):
    if not len(palette):
        raise InvalidArgument("Palette must contain at least one color.")


def find_closest_color(color: Color, palette: Sequence[Color]) -> Color:
    """
    Palette entry with the smallest mean channel distance to `color`.
    Ties go to the entry that comes first.
    """
    _check_palette(palette)
    best = palette[0]
    best_dist = mean_distance(color, best)
    for candidate in palette[1:]:
        d = mean_distance(color, candidate)
        if d < best_dist:
            best, best_dist = candidate, d
    return best


def closest_indices(values: np.ndarray, palette_arr: np.ndarray, chunk: int = 65536) -> np.ndarray:
    """
    Vectorised nearest-palette lookup for an (N, 4) array.
    Returns the index of the first palette row at minimum L1 distance.
    """
    out = np.empty(len(values), dtype=np.int64)
    for start in range(0, len(values), chunk):
        block = values[start:start + chunk]
        dist = np.abs(block[:, None, :] - palette_arr[None, :, :]).sum(axis=2)
        out[start:start + chunk] = dist.argmin(axis=1)
    return out


def _check_geometry(pixels: Sequence[Color], width) -> int:
    if isinstance(width, bool) or not isinstance(width, (int, np.integer)) or width <= 0:
        raise InvalidArgument("Width must be a natural number.")
    if len(pixels) % width:
        raise InvalidArgument(f"Pixel count {len(pixels)} is not a multiple of width {width}.")
    return len(pixels) // width


def _segments(traversal: Traversal, n: int):
    if traversal is Traversal.FORWARD:
        return [(range(n), 1)]
    if traversal is Traversal.REVERSE:
        return [(range(n - 1, -1, -1), -1)]
    mid = n // 2
    return [(range(mid + 1, n), 1), (range(mid, -1, -1), -1)]


def _diffuse(pixels: MutableSequence[Color], width: int, height: int,
             kernel: DitherKernel, quantize):
    """
    Single diffusion pass. `quantize(value)` maps a clipped RGBA row to
    (new Color, per-channel error numerator as a length-3 array).
    """
    work = colors_to_array(pixels)
    for indices, sign in _segments(kernel.traversal, len(pixels)):
        taps = [(sign * dx, sign * dy, w) for dx, dy, w in kernel.taps]
        for i in indices:
            value = np.clip(work[i], 0, 255)
            chosen, residual = quantize(value)
            pixels[i] = chosen
            err = residual // kernel.divisor
            if not err.any():
                continue
            y, x = divmod(i, width)
            for dx, dy, w in taps:
                nx = x + dx
                ny = y + dy
                if 0 <= nx < width and 0 <= ny < height:
                    work[ny * width + nx, :3] += err * w


def dither(pixels: MutableSequence[Color], width: int, palette: Sequence[Color],
           kernel="quick"):
    """
    Replace every pixel with its nearest palette color, diffusing the
    quantization error onto neighbours that have not been visited yet.

    Args:
        pixels: Row-major pixels, replaced in place
        width: Image width in pixels
        palette: Target colors
        kernel: Kernel name, DitherMode or DitherKernel

    Raises:
        InvalidArgument: empty palette, bad width or unknown kernel
    """
    kernel = _resolve_kernel(kernel, KERNELS)
    _check_palette(palette)
    height = _check_geometry(pixels, width)
    if not len(pixels):
        return

    palette = list(palette)
    palette_arr = colors_to_array(palette)
    cache: Dict[Tuple[int, ...], int] = {}

    def quantize(value):
        key = tuple(value.tolist())
        j = cache.get(key)
        if j is None:
            j = int(np.abs(palette_arr - value).sum(axis=1).argmin())
            cache[key] = j
        return palette[j], value[:3] - palette_arr[j, :3]

    logger.debug("Dithering %d pixels with %s against %d colors",
                 len(pixels), kernel.name, len(palette))
    _diffuse(pixels, width, height, kernel, quantize)


def monochrome_dither(pixels: MutableSequence[Color], width: int, kernel="floyd_steinberg"):
    """
    Bilevel dithering: the red channel is thresholded to black or white and
    only its error is diffused. Alpha is kept.

    Args:
        kernel: "floyd_steinberg" or "quick" propagation shape
    """
    kernel = _resolve_kernel(kernel, MONOCHROME_KERNELS)
    height = _check_geometry(pixels, width)
    if not len(pixels):
        return

    def quantize(value):
        level = 0 if value[0] < MONOCHROME_THRESHOLD else 255
        chosen = (BLACK if level == 0 else WHITE)
        if value[3] != 255:
            chosen = Color(level, level, level, int(value[3]))
        return chosen, np.array([value[0] - level, 0, 0], dtype=np.int64)

    logger.debug("Monochrome dithering %d pixels with %s", len(pixels), kernel.name)
    _diffuse(pixels, width, height, kernel, quantize)


def recolor(pixels: MutableSequence[Color], palette: Sequence[Color]):
    """Replace every pixel with its nearest palette color, no diffusion."""
    _check_palette(palette)
    if not len(pixels):
        return
    palette = list(palette)
    idx = closest_indices(colors_to_array(pixels), colors_to_array(palette))
    pixels[:] = [palette[j] for j in idx.tolist()]


def _resolve_kernel(kernel, table: Dict[str, DitherKernel]) -> DitherKernel:
    if isinstance(kernel, DitherKernel):
        return kernel
    name = kernel.value if isinstance(kernel, DitherMode) else kernel
    if name not in table:
        raise InvalidArgument(f"Unknown dithering method: {name}")
    return table[name]


# -------------------- Strategies --------------------

class BaseDitherStrategy:
    """
    Base class for dithering strategies.
    Each strategy implements .dither(pixels, width, palette), replacing the
    pixels in place.
    """
    def dither(self, pixels: MutableSequence[Color], width: int, palette: Sequence[Color]):
        raise NotImplementedError


class NoDitherStrategy(BaseDitherStrategy):
    """Nearest palette color for every pixel."""
    def dither(self, pixels, width, palette):
        recolor(pixels, palette)


class ErrorDiffusionStrategy(BaseDitherStrategy):
    def __init__(self, kernel: DitherKernel):
        self.kernel = kernel

    def dither(self, pixels, width, palette):
        dither(pixels, width, palette, self.kernel)


class MonochromeStrategy(BaseDitherStrategy):
    """Black and white output; the palette is ignored."""
    def __init__(self, kernel: DitherKernel):
        self.kernel = kernel

    def dither(self, pixels, width, palette):
        monochrome_dither(pixels, width, self.kernel)


def get_dither_strategy(mode) -> BaseDitherStrategy:
    try:
        mode = DitherMode(mode)
    except ValueError:
        raise InvalidArgument(f"Unrecognized dither mode: {mode}")
    if mode is DitherMode.NONE:
        return NoDitherStrategy()
    if mode is DitherMode.MONOCHROME_FS:
        return MonochromeStrategy(FLOYD_STEINBERG)
    if mode is DitherMode.MONOCHROME_QUICK:
        return MonochromeStrategy(QUICK)
    return ErrorDiffusionStrategy(KERNELS[mode.value])


def available_modes() -> List[str]:
    return [mode.value for mode in DitherMode]
