"""Tests for error-diffusion dithering."""

import numpy as np
import pytest

from color_lib import BLACK, WHITE, Color, InvalidArgument, colors_to_array
from dithering_lib import (
    KERNELS,
    DitherKernel,
    DitherMode,
    MonochromeStrategy,
    NoDitherStrategy,
    Traversal,
    closest_indices,
    dither,
    find_closest_color,
    get_dither_strategy,
    monochrome_dither,
    recolor,
)

PALETTE = [BLACK, WHITE, Color(255, 0, 0), Color(0, 0, 255)]


def _random_pixels(n, seed=0):
    rng = np.random.default_rng(seed)
    return [Color(*row) for row in rng.integers(0, 256, size=(n, 3)).tolist()]


class TestFindClosestColor:
    def test_gray_goes_to_black(self):
        assert find_closest_color(Color(100, 100, 100), [BLACK, WHITE]) == BLACK

    def test_light_gray_goes_to_white(self):
        assert find_closest_color(Color(200, 200, 200), [BLACK, WHITE]) == WHITE

    def test_tie_keeps_first(self):
        a, b = Color(0, 0, 0), Color(20, 0, 0)
        assert find_closest_color(Color(10, 0, 0), [a, b]) == a
        assert find_closest_color(Color(10, 0, 0), [b, a]) == b

    def test_empty_palette(self):
        with pytest.raises(InvalidArgument):
            find_closest_color(BLACK, [])

    def test_vectorised_lookup_agrees(self):
        pixels = _random_pixels(200)
        idx = closest_indices(colors_to_array(pixels), colors_to_array(PALETTE), chunk=32)
        assert [PALETTE[i] for i in idx] == [find_closest_color(p, PALETTE) for p in pixels]


class TestKernels:
    def test_weights_fit_divisor(self):
        for name in ("floyd_steinberg", "sierra_2", "sierra_lite", "bidirectional"):
            kernel = KERNELS[name]
            assert sum(w for _, _, w in kernel.taps) == kernel.divisor

    def test_traversals(self):
        assert KERNELS["floyd_steinberg"].traversal is Traversal.FORWARD
        assert KERNELS["sierra_lite"].traversal is Traversal.REVERSE
        assert KERNELS["quick"].traversal is Traversal.REVERSE
        assert KERNELS["bidirectional"].traversal is Traversal.OUTWARD

    def test_taps_point_at_unvisited_pixels(self):
        for kernel in KERNELS.values():
            for dx, dy, _ in kernel.taps:
                assert dy > 0 or (dy == 0 and dx > 0)


class TestDither:
    def test_on_palette_pixels_unchanged(self):
        pixels = [BLACK, WHITE, BLACK, WHITE]
        dither(pixels, 2, [BLACK, WHITE], "floyd_steinberg")
        assert pixels == [BLACK, WHITE, BLACK, WHITE]

    @pytest.mark.parametrize("name", sorted(KERNELS))
    def test_output_uses_palette_only(self, name):
        pixels = _random_pixels(48, seed=3)
        dither(pixels, 8, PALETTE, name)
        assert len(pixels) == 48
        assert set(pixels) <= set(PALETTE)

    @pytest.mark.parametrize("name", sorted(KERNELS))
    def test_solid_palette_color_is_stable(self, name):
        pixels = [Color(255, 0, 0)] * 30
        dither(pixels, 5, PALETTE, name)
        assert pixels == [Color(255, 0, 0)] * 30

    @pytest.mark.parametrize("name", ["floyd_steinberg", "sierra_2", "bidirectional"])
    def test_mean_preservation(self, name):
        pixels = [Color(128, 128, 128)] * 256
        dither(pixels, 16, [BLACK, WHITE], name)
        mean = sum(p.r for p in pixels) / len(pixels)
        assert abs(mean - 128) < 40

    def test_accepts_mode_and_descriptor(self):
        a = _random_pixels(20, seed=5)
        b = list(a)
        c = list(a)
        dither(a, 5, PALETTE, "sierra_2")
        dither(b, 5, PALETTE, DitherMode.SIERRA_2)
        dither(c, 5, PALETTE, KERNELS["sierra_2"])
        assert a == b == c

    def test_custom_kernel(self):
        right_only = DitherKernel("right_only", taps=((1, 0, 1),), divisor=1)
        pixels = [Color(100, 100, 100), Color(100, 100, 100)]
        dither(pixels, 2, [BLACK, WHITE], right_only)
        # first pixel goes black, carrying 100 onto the second
        assert pixels == [BLACK, WHITE]

    def test_error_does_not_wrap_rows(self):
        right_only = DitherKernel("right_only", taps=((1, 0, 1),), divisor=1)
        pixels = [BLACK, Color(100, 100, 100), Color(100, 100, 100), BLACK]
        dither(pixels, 2, [BLACK, WHITE], right_only)
        assert pixels[2] == BLACK

    def test_empty_palette_leaves_pixels(self):
        pixels = _random_pixels(6)
        before = list(pixels)
        with pytest.raises(InvalidArgument):
            dither(pixels, 3, [])
        assert pixels == before

    def test_bad_width_leaves_pixels(self):
        pixels = _random_pixels(6)
        before = list(pixels)
        with pytest.raises(InvalidArgument):
            dither(pixels, 4, PALETTE)
        with pytest.raises(InvalidArgument):
            dither(pixels, 0, PALETTE)
        assert pixels == before

    def test_unknown_kernel(self):
        with pytest.raises(InvalidArgument):
            dither([BLACK], 1, PALETTE, "atkinson")

    def test_empty_image(self):
        pixels = []
        dither(pixels, 1, PALETTE)
        assert pixels == []


def _gray(level):
    return Color(level, level, level)


def _spread(kernel, levels, source, at, width=7, height=5):
    """
    Dither a black grid holding one gray `source` pixel at `at` with a gray
    palette built from `levels`. Every level a neighbour can receive is in
    the palette, so neighbours keep exactly the error they were given.
    Returns {(dx, dy): red} for the non-black pixels around the source.
    """
    x0, y0 = at
    pixels = [BLACK] * (width * height)
    pixels[y0 * width + x0] = _gray(source)
    dither(pixels, width, [_gray(v) for v in levels], kernel)
    return {
        (i % width - x0, i // width - y0): p.r
        for i, p in enumerate(pixels)
        if p.r and i != y0 * width + x0
    }


class TestErrorPlacement:
    # the source is matched to the largest level and leaves a residual of 160,
    # i.e. 10 per sixteenth or 40 per quarter

    def test_floyd_steinberg(self):
        spread = _spread("floyd_steinberg", [0, 10, 30, 50, 70], 230, (3, 2))
        assert spread == {(1, 0): 70, (-1, 1): 30, (0, 1): 50, (1, 1): 10}

    def test_floyd_steinberg_right_edge(self):
        spread = _spread("floyd_steinberg", [0, 10, 30, 50, 70], 230, (6, 2))
        assert spread == {(-1, 1): 30, (0, 1): 50}

    def test_sierra_2(self):
        spread = _spread("sierra_2", [0, 10, 20, 30, 40], 200, (3, 2))
        assert spread == {
            (1, 0): 40, (2, 0): 30,
            (-2, 1): 10, (-1, 1): 20, (0, 1): 30, (1, 1): 20, (2, 1): 10,
        }

    def test_sierra_lite_runs_backwards(self):
        spread = _spread("sierra_lite", [0, 40, 80], 240, (3, 2))
        assert spread == {(-1, 0): 80, (0, -1): 40, (1, -1): 40}

    def test_quick_runs_backwards(self):
        spread = _spread("quick", [0, 10, 20, 40], 200, (3, 2))
        assert spread == {
            (-1, 0): 40, (-2, 0): 20,
            (2, -1): 10, (1, -1): 20, (0, -1): 20, (-1, -1): 20, (-2, -1): 10,
            (1, -2): 20,
        }

    def test_bidirectional_second_half_forward(self):
        # pixel 24 of 35 lies past the midpoint
        spread = _spread("bidirectional", [0, 10, 20, 30, 40], 200, (3, 3))
        assert spread == {
            (1, 0): 40, (2, 0): 30,
            (-2, 1): 10, (-1, 1): 20, (0, 1): 30, (1, 1): 20, (2, 1): 10,
        }

    def test_bidirectional_first_half_mirrored(self):
        # pixel 10 of 35 is visited on the way back to pixel 0
        spread = _spread("bidirectional", [0, 10, 20, 30, 40], 200, (3, 1))
        assert spread == {
            (-1, 0): 40, (-2, 0): 30,
            (2, -1): 10, (1, -1): 20, (0, -1): 30, (-1, -1): 20, (-2, -1): 10,
        }


class TestMonochrome:
    def test_alternating_row(self):
        pixels = [Color(10, 10, 10), Color(250, 250, 250), Color(10, 10, 10), Color(250, 250, 250)]
        monochrome_dither(pixels, 4)
        assert pixels == [BLACK, WHITE, BLACK, WHITE]

    def test_red_channel_decides(self):
        pixels = [Color(200, 0, 0), Color(100, 255, 255)]
        monochrome_dither(pixels, 1)
        assert pixels == [WHITE, BLACK]

    def test_threshold_midpoint_is_black(self):
        dark = [Color(128, 128, 128)]
        light = [Color(129, 129, 129)]
        monochrome_dither(dark, 1)
        monochrome_dither(light, 1)
        assert dark == [BLACK]
        assert light == [WHITE]

    def test_alpha_kept(self):
        pixels = [Color(200, 0, 0, 100)]
        monochrome_dither(pixels, 1)
        assert pixels == [Color(255, 255, 255, 100)]

    @pytest.mark.parametrize("kernel", ["floyd_steinberg", "quick"])
    def test_bilevel_output(self, kernel):
        pixels = _random_pixels(64, seed=11)
        monochrome_dither(pixels, 8, kernel)
        assert set(pixels) <= {BLACK, WHITE}

    def test_unknown_kernel(self):
        with pytest.raises(InvalidArgument):
            monochrome_dither([BLACK], 1, "sierra_lite")


class TestRecolor:
    def test_nearest_without_diffusion(self):
        pixels = [Color(100, 100, 100)] * 4
        recolor(pixels, [BLACK, WHITE])
        assert pixels == [BLACK] * 4

    def test_idempotent(self):
        pixels = _random_pixels(50, seed=2)
        recolor(pixels, PALETTE)
        once = list(pixels)
        recolor(pixels, PALETTE)
        assert pixels == once

    def test_keeps_list_identity(self):
        pixels = [Color(1, 1, 1)]
        ref = pixels
        recolor(pixels, PALETTE)
        assert ref is pixels and pixels == [BLACK]

    def test_empty_palette(self):
        with pytest.raises(InvalidArgument):
            recolor([BLACK], [])


class TestStrategies:
    def test_every_mode_has_a_strategy(self):
        for mode in DitherMode:
            pixels = _random_pixels(12, seed=4)
            get_dither_strategy(mode.value).dither(pixels, 4, PALETTE)
            assert set(pixels) <= set(PALETTE)

    def test_none_is_plain_recolor(self):
        assert isinstance(get_dither_strategy("none"), NoDitherStrategy)

    def test_monochrome_modes(self):
        assert isinstance(get_dither_strategy(DitherMode.MONOCHROME_QUICK), MonochromeStrategy)

    def test_unknown_mode(self):
        with pytest.raises(InvalidArgument):
            get_dither_strategy("ordered")
