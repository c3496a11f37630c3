"""
Color value type shared by the quantizer, the ditherers and the image wrapper.
Also carries the informational conversions (HSL, HSV, CMYK, Lab) used when
printing a palette.
"""

import re
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

__all__ = [
    'InvalidArgument',
    'Color',
    'BLACK',
    'WHITE',
    'mean_distance',
    'srgb_to_linear',
    'colors_to_array',
    'array_to_colors',
]


class InvalidArgument(ValueError):
    """Raised when an operation is called with arguments it cannot honour."""
    pass


_HEX_RE = re.compile(r'^#?([A-Fa-f0-9]{3}|[A-Fa-f0-9]{6}|[A-Fa-f0-9]{8})$')


def _check_channel(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            as_int = int(value)
        except (TypeError, ValueError):
            raise InvalidArgument(f"Channel {name} must be an integer, got {value!r}")
        if as_int != value:
            raise InvalidArgument(f"Channel {name} must be an integer, got {value!r}")
        value = as_int
    if not 0 <= value <= 255:
        raise InvalidArgument(f"Channel {name} out of range [0, 255]: {value}")
    return value


def srgb_to_linear(c: float) -> float:
    """sRGB companding inverse for a channel in [0, 1]."""
    if c <= 0.04045:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


# -------------------- Color --------------------

@dataclass(frozen=True)
class Color:
    """
    Immutable RGBA color with 8-bit channels.
    Alpha defaults to 255 (opaque).
    """
    r: int
    g: int
    b: int
    a: int = 255

    def __post_init__(self):
        # frozen dataclass: normalise through object.__setattr__
        for name in ('r', 'g', 'b', 'a'):
            object.__setattr__(self, name, _check_channel(name, getattr(self, name)))

    @classmethod
    def from_hex(cls, hex_color: str) -> 'Color':
        """
        Parse "#rgb", "#rrggbb" or "#rrggbbaa" (leading '#' optional).

        Raises:
            InvalidArgument: if the string is not a hex color
        """
        match = _HEX_RE.match(hex_color.strip()) if isinstance(hex_color, str) else None
        if not match:
            raise InvalidArgument(f"Expected hex code, got {hex_color!r}")
        digits = match.group(1)
        if len(digits) == 3:
            digits = ''.join(ch * 2 for ch in digits)
        channels = [int(digits[i:i + 2], 16) for i in range(0, len(digits), 2)]
        return cls(*channels)

    @classmethod
    def from_tuple(cls, values) -> 'Color':
        """Build from an (r, g, b) or (r, g, b, a) sequence."""
        values = tuple(int(v) for v in values)
        if len(values) not in (3, 4):
            raise InvalidArgument(f"Expected 3 or 4 channels, got {len(values)}")
        return cls(*values)

    def to_tuple(self) -> Tuple[int, int, int, int]:
        return (self.r, self.g, self.b, self.a)

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        text = f'#{self.r:02x}{self.g:02x}{self.b:02x}'
        if self.a != 255:
            text += f'{self.a:02x}'
        return text

    # -- simple derived values --

    @property
    def average(self) -> float:
        return (self.r + self.g + self.b) / 3

    @property
    def max(self) -> float:
        return max(self.r, self.g, self.b) / 255

    @property
    def min(self) -> float:
        return min(self.r, self.g, self.b) / 255

    @property
    def chroma(self) -> float:
        return self.max - self.min

    @property
    def lightness(self) -> float:
        return (self.max + self.min) / 2

    @property
    def hue(self) -> float:
        """Hue in [0, 1). Achromatic colors report 0."""
        c = self.chroma
        if not c:
            return 0.0
        r, g, b = self.r / 255, self.g / 255, self.b / 255
        mx = self.max
        if mx == r:
            h = ((g - b) / c) % 6
        elif mx == g:
            h = (b - r) / c + 2
        else:
            h = (r - g) / c + 4
        return h / 6

    @property
    def saturation(self) -> float:
        """HSL saturation in [0, 1]."""
        c = self.chroma
        if not c:
            return 0.0
        return c / (1 - abs(2 * self.lightness - 1))

    @property
    def luminosity(self) -> float:
        """Weighted luminosity in [0, 255]."""
        return self.r * 0.21 + self.g * 0.72 + self.b * 0.07

    @property
    def grayscale(self) -> 'Color':
        l = min(255, int(self.luminosity))
        return Color(l, l, l, self.a)

    @property
    def invert(self) -> 'Color':
        return Color(255 - self.r, 255 - self.g, 255 - self.b, self.a)

    # -- informational conversions --

    def to_hsl(self) -> Tuple[float, float, float]:
        """(hue degrees, saturation %, lightness %)."""
        return (self.hue * 360, self.saturation * 100, self.lightness * 100)

    def to_hsv(self) -> Tuple[float, float, float]:
        """(hue degrees, saturation %, value %)."""
        v = self.max
        s = 0.0 if v == 0 else self.chroma / v
        return (self.hue * 360, s * 100, v * 100)

    def to_cmyk(self) -> Tuple[float, float, float, float]:
        """(c, m, y, k) as percentages."""
        k = 1 - self.max
        if k >= 1:
            return (0.0, 0.0, 0.0, 100.0)
        r, g, b = self.r / 255, self.g / 255, self.b / 255
        c = (1 - r - k) / (1 - k)
        m = (1 - g - k) / (1 - k)
        y = (1 - b - k) / (1 - k)
        return (c * 100, m * 100, y * 100, k * 100)

    def to_lab(self) -> Tuple[float, float, float]:
        """CIE L*a*b* under D65."""
        r, g, b = (srgb_to_linear(v / 255) for v in (self.r, self.g, self.b))
        x = (r * 0.4124564 + g * 0.3575761 + b * 0.1804375) / 0.95047
        y = (r * 0.2126729 + g * 0.7151522 + b * 0.0721750) / 1.00000
        z = (r * 0.0193339 + g * 0.1191920 + b * 0.9503041) / 1.08883

        def f(t):
            return t ** (1 / 3) if t > 216 / 24389 else (24389 / 27 * t + 16) / 116

        fx, fy, fz = f(x), f(y), f(z)
        return (116 * fy - 16, 500 * (fx - fy), 200 * (fy - fz))

    def __str__(self) -> str:
        return f'rgba({self.r},{self.g},{self.b},{self.a / 255:g})'


BLACK = Color(0, 0, 0)
WHITE = Color(255, 255, 255)


def mean_distance(a: Color, b: Color) -> float:
    """
    Mean absolute channel distance between two colors, normalised to [0, 1].
    Alpha counts as a fourth channel.
    """
    return (
        abs(a.r - b.r) + abs(a.g - b.g) + abs(a.b - b.b) + abs(a.a - b.a)
    ) / 255 / 4


def colors_to_array(colors: Sequence[Color]) -> np.ndarray:
    """Pack a sequence of Color into an (N, 4) int64 array."""
    arr = np.array([(c.r, c.g, c.b, c.a) for c in colors], dtype=np.int64)
    return arr.reshape((-1, 4))


def array_to_colors(arr: np.ndarray) -> list:
    """Unpack an (N, 4) or (N, 3) integer array into a list of Color."""
    arr = np.asarray(arr)
    if arr.ndim != 2 or arr.shape[1] not in (3, 4):
        raise InvalidArgument(f"Expected an (N, 3) or (N, 4) array, got shape {arr.shape}")
    return [Color(*(int(v) for v in row)) for row in arr.tolist()]
