"""
Palette extraction over a quantized RGB histogram.

Two interchangeable strategies consume a ColorHistogram:
  - popularity: the most populated 5-bit buckets
  - median cut: recursive splitting of the populated volume of the color cube
    (modified median cut as found in Leptonica)
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from color_lib import Color, InvalidArgument, colors_to_array

__all__ = [
    'ColorHistogram',
    'ColorRange',
    'get_histogram',
    'get_color_range',
    'vbox_size',
    'vbox_volume',
    'get_average_color',
    'median_cut',
    'quantize_by_popularity',
    'quantize_by_median_cut',
    'reduce_palette',
    'PALETTE_METHODS',
]

logger = logging.getLogger(__name__)

SIGBITS = 5
RSHIFT = 8 - SIGBITS
HISTOGRAM_SIZE = 1 << (3 * SIGBITS)
SIDE = 1 << SIGBITS

# Upper bound on split attempts per phase of the median cut.
MAX_ITERATIONS = 1000


# -------------------- Histogram --------------------

class ColorHistogram:
    """
    Histogram of pixel colors over a reduced color space.
    Each channel keeps its top 5 bits, so the image is effectively quantized
    into 32768 buckets indexed as (r5 << 10) | (g5 << 5) | b5. Alpha is ignored.

    Besides the counts, per-bucket channel sums are kept so that averages over
    a region of the cube reflect the exact pixel colors, not bucket corners.
    """

    def __init__(self):
        self._data = np.zeros(HISTOGRAM_SIZE, dtype=np.uint32)
        self._sums = np.zeros((HISTOGRAM_SIZE, 3), dtype=np.uint64)

    @staticmethod
    def get_index(color: Color) -> int:
        return ((color.r >> RSHIFT) << (2 * SIGBITS)) | ((color.g >> RSHIFT) << SIGBITS) | (color.b >> RSHIFT)

    def get(self, color: Color) -> int:
        return int(self._data[self.get_index(color)])

    def get_by_quantized_coords(self, r5: int, g5: int, b5: int) -> int:
        """Lookup by already-quantized coordinates, each in [0, 31]."""
        for v in (r5, g5, b5):
            if not 0 <= v < SIDE:
                raise InvalidArgument(f"Quantized coordinate out of range: {v}")
        return int(self._data[(r5 << (2 * SIGBITS)) | (g5 << SIGBITS) | b5])

    def add(self, color: Color, amount: int = 1) -> int:
        """
        Count `amount` pixels of `color`.

        Returns:
            The bucket count before the increment
        """
        if amount < 0:
            raise InvalidArgument("Histogram counts can only grow")
        index = self.get_index(color)
        previous = int(self._data[index])
        self._data[index] = previous + amount
        self._sums[index] += np.array([color.r, color.g, color.b], dtype=np.uint64) * np.uint64(amount)
        return previous

    def update(self, pixels: Sequence[Color]):
        """Count every pixel of a sequence in one vectorised pass."""
        if not len(pixels):
            return
        self.update_from_array(colors_to_array(pixels))

    def update_from_array(self, arr: np.ndarray):
        """Count the rows of an (N, 3+) integer RGB(A) array."""
        arr = np.asarray(arr, dtype=np.int64)
        if not arr.size:
            return
        q = arr[:, :3] >> RSHIFT
        index = (q[:, 0] << (2 * SIGBITS)) | (q[:, 1] << SIGBITS) | q[:, 2]
        self._data += np.bincount(index, minlength=HISTOGRAM_SIZE).astype(np.uint32)
        for ch in range(3):
            sums = np.bincount(index, weights=arr[:, ch], minlength=HISTOGRAM_SIZE)
            self._sums[:, ch] += np.rint(sums).astype(np.uint64)

    @staticmethod
    def color_for_bucket(index: int) -> Color:
        """
        Representative color of a bucket: each 5-bit coordinate expanded back to
        the lower bound of its 8-wide cell. Many colors share one representative.
        """
        if not 0 <= index < HISTOGRAM_SIZE:
            raise InvalidArgument(f"Bucket index out of range: {index}")
        ri = index >> (2 * SIGBITS)
        gi = (index >> SIGBITS) & (SIDE - 1)
        bi = index & (SIDE - 1)
        return Color(ri << RSHIFT, gi << RSHIFT, bi << RSHIFT, 255)

    @property
    def raw(self) -> np.ndarray:
        return self._data

    @property
    def cube(self) -> np.ndarray:
        """Counts viewed as a [r5, g5, b5] cube."""
        return self._data.reshape((SIDE, SIDE, SIDE))

    @property
    def sums_cube(self) -> np.ndarray:
        return self._sums.reshape((SIDE, SIDE, SIDE, 3))

    @property
    def total(self) -> int:
        return int(self._data.sum(dtype=np.uint64))

    def __len__(self) -> int:
        return HISTOGRAM_SIZE


def get_histogram(pixels: Sequence[Color]) -> ColorHistogram:
    """Get a histogram of the frequency of colors."""
    histo = ColorHistogram()
    histo.update(pixels)
    logger.debug("Histogram over %d pixels, %d populated buckets",
                 len(pixels), int(np.count_nonzero(histo.raw)))
    return histo


# -------------------- Vbox --------------------

@dataclass(frozen=True)
class ColorRange:
    """
    Axis-aligned box in the quantized (5 bits per channel) color cube.
    Bounds are inclusive.
    """
    r_min: int
    r_max: int
    g_min: int
    g_max: int
    b_min: int
    b_max: int

    def __post_init__(self):
        for axis in range(3):
            lo, hi = self.bounds(axis)
            if not 0 <= lo <= hi < SIDE:
                raise InvalidArgument(f"Invalid vbox bounds on axis {axis}: [{lo}, {hi}]")

    _FIELDS = (('r_min', 'r_max'), ('g_min', 'g_max'), ('b_min', 'b_max'))

    def bounds(self, axis: int) -> Tuple[int, int]:
        lo, hi = self._FIELDS[axis]
        return getattr(self, lo), getattr(self, hi)

    def with_bounds(self, axis: int, lo: int, hi: int) -> 'ColorRange':
        lo_name, hi_name = self._FIELDS[axis]
        return replace(self, **{lo_name: lo, hi_name: hi})

    @property
    def widths(self) -> Tuple[int, int, int]:
        return tuple(hi - lo + 1 for lo, hi in (self.bounds(a) for a in range(3)))

    @property
    def slices(self) -> Tuple[slice, slice, slice]:
        return tuple(slice(lo, hi + 1) for lo, hi in (self.bounds(a) for a in range(3)))


def get_color_range(pixels: Sequence[Color]) -> ColorRange:
    """Bounding vbox of all pixel colors at 5-bit granularity."""
    if not len(pixels):
        raise InvalidArgument("There must be at least one color in the image.")
    q = colors_to_array(pixels)[:, :3] >> RSHIFT
    mn = q.min(axis=0)
    mx = q.max(axis=0)
    return ColorRange(int(mn[0]), int(mx[0]), int(mn[1]), int(mx[1]), int(mn[2]), int(mx[2]))


def vbox_size(vbox: ColorRange, histo: ColorHistogram) -> int:
    """Number of pixels inside the vbox."""
    return int(histo.cube[vbox.slices].sum(dtype=np.uint64))


def vbox_volume(vbox: ColorRange) -> int:
    rw, gw, bw = vbox.widths
    return rw * gw * bw


def get_average_color(vbox: ColorRange, histo: ColorHistogram) -> Color:
    """
    Centroid of the pixels inside the vbox. An empty box yields the color at
    its geometric center.
    """
    total = vbox_size(vbox, histo)
    if total:
        sums = histo.sums_cube[vbox.slices].reshape((-1, 3)).sum(axis=0, dtype=np.uint64)
        r, g, b = (int(s) // total for s in sums)
        return Color(r, g, b, 255)
    center = [
        min(255, (1 << RSHIFT) * (lo + hi + 1) // 2)
        for lo, hi in (vbox.bounds(a) for a in range(3))
    ]
    return Color(center[0], center[1], center[2], 255)


def median_cut(vbox: ColorRange, histo: ColorHistogram) -> Optional[Tuple[ColorRange, ColorRange]]:
    """
    Cut a vbox in two along its widest axis at the population median,
    nudged toward the middle of the larger remainder.

    Returns:
        The two children, or None when the box cannot be split
    """
    count = vbox_size(vbox, histo)
    if count < 2:
        return None

    widths = vbox.widths
    # ties resolve r, then g, then b
    axis = widths.index(max(widths))
    if widths[axis] < 2:
        return None

    lo, hi = vbox.bounds(axis)
    other_axes = tuple(a for a in range(3) if a != axis)
    slice_sums = histo.cube[vbox.slices].sum(axis=other_axes, dtype=np.uint64)
    partial = np.cumsum(slice_sums)

    # first coordinate where the running total reaches half the population
    median = lo + int(np.argmax(partial * 2 >= count))
    left = median - lo
    right = hi - median
    if left <= right:
        cut_at = min(hi - 1, median + right // 2)
    else:
        cut_at = max(lo, median - 1 - (left + 1) // 2)

    while not partial[cut_at - lo] and cut_at < hi - 1:
        cut_at += 1

    return vbox.with_bounds(axis, lo, cut_at), vbox.with_bounds(axis, cut_at + 1, hi)


# -------------------- Strategies --------------------

def _check_histogram(histo: ColorHistogram):
    if not histo.total:
        raise InvalidArgument("There must be at least one color in the palette.")


def _check_count(extract_count) -> int:
    if isinstance(extract_count, bool) or not isinstance(extract_count, (int, np.integer)):
        raise InvalidArgument(f"Extract count must be an integer, got {extract_count!r}")
    return int(extract_count)


def quantize_by_popularity(histo: ColorHistogram, extract_count: int) -> List[Color]:
    """
    The `extract_count` most populated buckets, most popular first.
    Equal counts keep ascending bucket index order.

    Raises:
        InvalidArgument: if extract_count < 1 or the histogram is empty
    """
    extract_count = _check_count(extract_count)
    if extract_count < 1:
        raise InvalidArgument("Cannot extract less than one color.")
    _check_histogram(histo)

    counts = histo.raw
    populated = np.flatnonzero(counts)
    order = np.argsort(-counts[populated].astype(np.int64), kind='stable')
    chosen = populated[order][:extract_count]
    return [ColorHistogram.color_for_bucket(int(i)) for i in chosen]


def _check_median_cut_count(extract_count) -> int:
    extract_count = _check_count(extract_count)
    if extract_count < 2:
        raise InvalidArgument("Cannot extract less than two colors.")
    if extract_count > 256:
        raise InvalidArgument("Cannot extract more than 256 colors.")
    if extract_count & (extract_count - 1):
        raise InvalidArgument("Extract count must be a power of two.")
    return extract_count


def _grow_boxes(queue: Deque[ColorRange], histo: ColorHistogram, target: int) -> int:
    """
    Split boxes in queue order until `target` boxes exist. The front box is
    taken and its two children go to the back; a box that cannot be split
    (empty or a single populated cell) goes to the back unchanged. Every
    dequeue counts toward MAX_ITERATIONS.
    """
    iterations = 0
    while iterations < MAX_ITERATIONS and len(queue) < target:
        iterations += 1
        vbox = queue.popleft()
        cut = median_cut(vbox, histo)
        if cut is None:
            queue.append(vbox)
            continue
        queue.extend(cut)
    return iterations


def quantize_by_median_cut(vbox: ColorRange, histo: ColorHistogram,
                           extract_count: int) -> List[Color]:
    """
    Modified median cut quantization.

    Boxes are split first-in first-out: up to half the target in the first
    phase, then, after ordering by population * volume, up to the full target.
    The order favours large sparse regions.

    Args:
        vbox: Bounding box of all pixel colors (see get_color_range)
        histo: Histogram of the same pixels
        extract_count: Power of two in [2, 256]

    Returns:
        Up to extract_count colors, largest population * volume first

    Raises:
        InvalidArgument: on a bad extract_count or an empty histogram
    """
    extract_count = _check_median_cut_count(extract_count)
    _check_histogram(histo)

    sizes: Dict[ColorRange, int] = {}

    def population_volume(box: ColorRange) -> int:
        if box not in sizes:
            sizes[box] = vbox_size(box, histo)
        return sizes[box] * vbox_volume(box)

    queue = deque([vbox])
    first = _grow_boxes(queue, histo, extract_count >> 1)
    queue = deque(sorted(queue, key=population_volume, reverse=True))
    second = _grow_boxes(queue, histo, extract_count)
    logger.debug("Median cut: %d boxes after %d + %d iterations", len(queue), first, second)

    result = sorted(queue, key=population_volume, reverse=True)
    return [get_average_color(box, histo) for box in result[:extract_count]]


PALETTE_METHODS = ('median_cut', 'popularity')


def reduce_palette(pixels: Sequence[Color], extract_count: int,
                   method: str = 'median_cut') -> List[Color]:
    """
    Reduce a pixel list to a small palette.

    Args:
        pixels: Source pixels
        extract_count: Palette size (power of two in [2, 256] for median cut)
        method: "median_cut" or "popularity"
    """
    if method not in PALETTE_METHODS:
        raise InvalidArgument(f"Unknown palette method: {method}")
    if not len(pixels):
        raise InvalidArgument("There must be at least one color in the palette.")
    if method == 'popularity':
        if _check_count(extract_count) < 1:
            raise InvalidArgument("Cannot extract less than one color.")
        return quantize_by_popularity(get_histogram(pixels), extract_count)
    _check_median_cut_count(extract_count)
    return quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), extract_count)
