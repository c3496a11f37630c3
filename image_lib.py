"""
Image wrapper owning a row-major list of Color, plus the decode/encode
collaborators that move RGBA buffers in and out of files and URLs.
All Image methods mutate the image itself.
"""

import io
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import requests
from PIL import Image as PILImage, UnidentifiedImageError
from scipy import ndimage

from color_lib import BLACK, WHITE, Color, InvalidArgument, array_to_colors, colors_to_array
from dithering_lib import KERNELS, dither, monochrome_dither, recolor
from quantize_lib import reduce_palette

__all__ = [
    'DecodeFailure',
    'Image',
    'box_blur',
    'get_pixels',
    'save_image',
    'get_prominent_colors',
    'BLUR_METHODS',
]

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r'^https?://', re.IGNORECASE)

BLUR_METHODS = ('box',)


class DecodeFailure(Exception):
    """Raised when an image cannot be loaded from a path, URL or buffer."""
    pass


def _natural(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise InvalidArgument(f"{name} must be a natural number.")
    return int(value)


# -------------------- Blur --------------------

_BOX = np.ones((3, 3), dtype=np.int64)


def box_blur(pixels: np.ndarray) -> np.ndarray:
    """
    3x3 neighbourhood average of an (H, W, 4) array. Neighbours outside the
    image are left out of the average. Alpha is kept.
    """
    h, w = pixels.shape[:2]
    counts = ndimage.convolve(np.ones((h, w), dtype=np.int64), _BOX, mode='constant', cval=0)
    out = pixels.copy()
    for ch in range(3):
        sums = ndimage.convolve(pixels[:, :, ch].astype(np.int64), _BOX, mode='constant', cval=0)
        out[:, :, ch] = sums // counts
    return out


# -------------------- Image --------------------

class Image:
    """
    Image with width, height and pixel data.
    Pixels are a row-major list of Color, width * height long.
    """
    channels = 4
    color_space = "srgb"

    def __init__(self, data, width: int, height: Optional[int] = None):
        """
        Args:
            data: Flat RGBA bytes (bytes, bytearray, numpy array or list of ints)
            width: Width in pixels
            height: Height in pixels, derived from the buffer length when omitted
        """
        arr = np.asarray(data if not isinstance(data, (bytes, bytearray))
                         else np.frombuffer(bytes(data), dtype=np.uint8))
        arr = arr.reshape(-1).astype(np.int64)
        width = _natural(width, "Width")
        if height is None:
            if arr.size % (4 * width):
                raise InvalidArgument("Buffer length is not a whole number of RGBA rows.")
            height = arr.size // (4 * width)
        height = _natural(height, "Height")
        if arr.size != width * height * 4:
            raise InvalidArgument(
                f"Buffer holds {arr.size} values, expected {width * height * 4} for {width}x{height} RGBA."
            )
        self.width = width
        self.height = height
        self.pixels: List[Color] = array_to_colors(arr.reshape((-1, 4)))

    @classmethod
    def from_colors(cls, pixels: Sequence[Color], width: int) -> 'Image':
        width = _natural(width, "Width")
        return cls(colors_to_array(pixels).reshape(-1), width)

    @classmethod
    def from_pil(cls, image: PILImage.Image) -> 'Image':
        rgba = image.convert('RGBA')
        return cls(np.array(rgba, dtype=np.uint8).reshape(-1), rgba.width, rgba.height)

    # -- filters --

    def blur(self, method: str = "box"):
        """Blur the image. Only box blur is supported."""
        if method not in BLUR_METHODS:
            raise InvalidArgument(f"Unknown blur method {method}")
        blurred = box_blur(self.to_array().astype(np.int64))
        self.pixels = array_to_colors(blurred.reshape((-1, 4)))

    def dither(self, palette: Sequence[Color], method: str = "quick"):
        """Recolor the image with error diffusion."""
        if method not in KERNELS:
            raise InvalidArgument(f"Unknown dithering method: {method}")
        dither(self.pixels, self.width, palette, method)

    def recolor(self, palette: Sequence[Color]):
        """Recolor the image without dithering."""
        recolor(self.pixels, palette)

    def monochrome(self, dither: bool = False, method: str = "floyd_steinberg"):
        """Recolor the image using just black and white."""
        if dither:
            monochrome_dither(self.pixels, self.width, method)
        else:
            self.recolor([BLACK, WHITE])

    def grayscale(self):
        self.pixels = [c.grayscale for c in self.pixels]

    def invert(self):
        self.pixels = [c.invert for c in self.pixels]

    def map(self, fn: Callable[[Color], Color]):
        """Apply a function on every pixel in the image."""
        mapped = [fn(c) for c in self.pixels]
        for c in mapped:
            if not isinstance(c, Color):
                raise InvalidArgument(f"map() must return Color values, got {type(c).__name__}")
        self.pixels = mapped

    def palette(self, extract_count: int, method: str = "median_cut") -> List[Color]:
        """Extract a palette from the current pixels."""
        return reduce_palette(self.pixels, extract_count, method)

    # -- export --

    def to_array(self) -> np.ndarray:
        """Pixels as an (H, W, 4) uint8 array."""
        return colors_to_array(self.pixels).astype(np.uint8).reshape((self.height, self.width, 4))

    @property
    def data(self) -> bytes:
        """Flat RGBA bytes."""
        return self.to_array().tobytes()

    def to_pil(self) -> PILImage.Image:
        return PILImage.fromarray(self.to_array(), 'RGBA')

    def __len__(self) -> int:
        return len(self.pixels)

    def __repr__(self) -> str:
        return f"Image({self.width}x{self.height})"


# -------------------- Decode / encode --------------------

def _fetch(url: str, timeout: float) -> bytes:
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise DecodeFailure(f"Unable to load image from {url}: {e}") from e
    return response.content


def get_pixels(source: Union[str, Path, bytes, bytearray], timeout: float = 10) -> Image:
    """
    Decode an image from a local path, an http(s) URL or raw encoded bytes.

    Raises:
        DecodeFailure: if the source cannot be read or is not an image
    """
    if isinstance(source, (bytes, bytearray)):
        payload = bytes(source)
        label = "buffer"
    elif isinstance(source, str) and _URL_RE.match(source.strip()):
        label = source.strip()
        payload = _fetch(label, timeout)
    else:
        path = Path(source)
        label = str(path)
        try:
            payload = path.read_bytes()
        except OSError as e:
            raise DecodeFailure(f"Unable to load image {label}: {e}") from e

    try:
        with PILImage.open(io.BytesIO(payload)) as img:
            image = Image.from_pil(img)
    except (UnidentifiedImageError, OSError) as e:
        raise DecodeFailure(f"Unable to decode image {label}: {e}") from e
    logger.debug("Decoded %s: %dx%d", label, image.width, image.height)
    return image


def save_image(image: Image, path: Union[str, Path], format: Optional[str] = None):
    """Encode an Image to a file; the container follows the extension unless given."""
    path = Path(path)
    pil = image.to_pil()
    if (format or path.suffix.lstrip('.')).lower() in ('jpg', 'jpeg', 'bmp'):
        pil = pil.convert('RGB')
    pil.save(path, format=format)


def get_prominent_colors(source, extract_count: int, method: str = "median_cut") -> List[Color]:
    """Decode an image and reduce it to a palette."""
    return reduce_palette(get_pixels(source).pixels, extract_count, method)
