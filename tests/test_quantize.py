"""Tests for histogram building and palette extraction."""

import numpy as np
import pytest

from color_lib import BLACK, WHITE, Color, InvalidArgument, colors_to_array
from quantize_lib import (
    HISTOGRAM_SIZE,
    ColorHistogram,
    ColorRange,
    get_average_color,
    get_color_range,
    get_histogram,
    median_cut,
    quantize_by_median_cut,
    quantize_by_popularity,
    reduce_palette,
    vbox_size,
    vbox_volume,
)


def _cube_samples(step=32):
    return [Color(r, g, b) for r in range(0, 256, step)
            for g in range(0, 256, step) for b in range(0, 256, step)]


class TestColorHistogram:
    def test_index_layout(self):
        assert ColorHistogram.get_index(Color(10, 20, 30)) == (1 << 10) | (2 << 5) | 3

    def test_bucket_representative(self):
        index = ColorHistogram.get_index(Color(10, 20, 30))
        assert ColorHistogram.color_for_bucket(index) == Color(8, 16, 24)

    def test_bucket_out_of_range(self):
        with pytest.raises(InvalidArgument):
            ColorHistogram.color_for_bucket(HISTOGRAM_SIZE)

    def test_add_returns_previous_count(self):
        histo = ColorHistogram()
        assert histo.add(Color(1, 2, 3)) == 0
        assert histo.add(Color(4, 5, 6)) == 1
        assert histo.add(Color(7, 7, 7), amount=3) == 2
        assert histo.get(Color(0, 0, 0)) == 5

    def test_alpha_ignored(self):
        histo = ColorHistogram()
        histo.add(Color(100, 100, 100, 0))
        assert histo.get(Color(100, 100, 100)) == 1

    def test_update_counts_every_pixel(self):
        pixels = [Color(0, 0, 0)] * 3 + [Color(255, 255, 255)] * 2
        histo = get_histogram(pixels)
        assert histo.total == 5
        assert histo.get(BLACK) == 3
        assert histo.get(WHITE) == 2
        assert int(np.count_nonzero(histo.raw)) == 2

    def test_update_matches_add(self):
        pixels = _cube_samples(64) + [Color(3, 9, 200)] * 4
        bulk = get_histogram(pixels)
        single = ColorHistogram()
        for p in pixels:
            single.add(p)
        assert np.array_equal(bulk.raw, single.raw)
        assert np.array_equal(bulk.sums_cube, single.sums_cube)

    def test_quantized_coords(self):
        histo = get_histogram([Color(255, 0, 8)])
        assert histo.get_by_quantized_coords(31, 0, 1) == 1
        with pytest.raises(InvalidArgument):
            histo.get_by_quantized_coords(32, 0, 0)

    def test_size(self):
        assert len(ColorHistogram()) == 32768
        assert ColorHistogram().cube.shape == (32, 32, 32)


class TestColorRange:
    def test_bounds_validated(self):
        with pytest.raises(InvalidArgument):
            ColorRange(5, 4, 0, 0, 0, 0)
        with pytest.raises(InvalidArgument):
            ColorRange(0, 32, 0, 0, 0, 0)

    def test_volume_uses_inclusive_extent(self):
        assert vbox_volume(ColorRange(0, 31, 0, 31, 0, 31)) == 32768
        assert vbox_volume(ColorRange(3, 3, 3, 3, 3, 3)) == 1

    def test_get_color_range(self):
        vbox = get_color_range([Color(8, 200, 0), Color(64, 16, 255)])
        assert vbox == ColorRange(1, 8, 2, 25, 0, 31)

    def test_get_color_range_empty(self):
        with pytest.raises(InvalidArgument):
            get_color_range([])

    def test_vbox_size(self):
        pixels = [BLACK, BLACK, WHITE]
        histo = get_histogram(pixels)
        assert vbox_size(ColorRange(0, 15, 0, 31, 0, 31), histo) == 2
        assert vbox_size(get_color_range(pixels), histo) == 3


class TestAverageColor:
    def test_exact_average_within_bucket(self):
        histo = get_histogram([Color(9, 9, 9), Color(11, 11, 11)])
        assert get_average_color(ColorRange(1, 1, 1, 1, 1, 1), histo) == Color(10, 10, 10)

    def test_empty_box_uses_center(self):
        histo = ColorHistogram()
        assert get_average_color(ColorRange(0, 0, 0, 0, 0, 0), histo) == Color(4, 4, 4)
        assert get_average_color(ColorRange(0, 31, 0, 31, 0, 31), histo) == Color(128, 128, 128)


class TestMedianCut:
    def test_single_bucket_cannot_split(self):
        pixels = [Color(10, 20, 30)] * 4
        assert median_cut(get_color_range(pixels), get_histogram(pixels)) is None

    def test_split_black_white(self):
        pixels = [BLACK, WHITE]
        left, right = median_cut(get_color_range(pixels), get_histogram(pixels))
        assert left.bounds(0) == (0, 15)
        assert right.bounds(0) == (16, 31)
        assert left.bounds(1) == right.bounds(1) == (0, 31)

    def test_children_partition_population(self):
        pixels = _cube_samples(32)
        histo = get_histogram(pixels)
        vbox = get_color_range(pixels)
        left, right = median_cut(vbox, histo)
        assert vbox_size(left, histo) + vbox_size(right, histo) == len(pixels)
        assert vbox_size(left, histo) > 0
        assert vbox_size(right, histo) > 0

    def test_cut_biased_toward_low_side(self):
        # median at 7 with seven slots below and three above
        pixels = [Color(0, 0, 0)] + [Color(56, 0, 0)] * 10 + [Color(80, 0, 0)]
        vbox = get_color_range(pixels)
        assert vbox.bounds(0) == (0, 10)
        left, right = median_cut(vbox, get_histogram(pixels))
        assert left.bounds(0) == (0, 2)
        assert right.bounds(0) == (3, 10)


class TestPopularity:
    def test_most_popular_first(self):
        pixels = [Color(0, 200, 0)] + [Color(200, 0, 0)] * 5 + [Color(0, 0, 200)] * 2
        result = quantize_by_popularity(get_histogram(pixels), 2)
        assert result == [Color(200, 0, 0), Color(0, 0, 200)]

    def test_ties_keep_bucket_order(self):
        pixels = [Color(200, 0, 0)] * 3 + [Color(0, 0, 200)] * 3
        result = quantize_by_popularity(get_histogram(pixels), 2)
        assert result == [Color(0, 0, 200), Color(200, 0, 0)]

    def test_fewer_buckets_than_requested(self):
        result = quantize_by_popularity(get_histogram([BLACK, WHITE]), 10)
        assert len(result) == 2

    def test_returns_bucket_representatives(self):
        result = quantize_by_popularity(get_histogram([Color(13, 250, 100)]), 1)
        assert result == [Color(8, 248, 96)]

    def test_invalid_count(self):
        histo = get_histogram([BLACK])
        with pytest.raises(InvalidArgument):
            quantize_by_popularity(histo, 0)

    def test_empty_histogram(self):
        with pytest.raises(InvalidArgument):
            quantize_by_popularity(ColorHistogram(), 4)


class TestMedianCutQuantize:
    @pytest.mark.parametrize("count", [2, 4, 16, 64])
    def test_exact_count_on_varied_input(self, count):
        pixels = _cube_samples(32)
        result = quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), count)
        assert len(result) == count
        assert all(isinstance(c, Color) for c in result)

    def test_single_color(self):
        pixels = [Color(10, 20, 30)] * 5
        result = quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), 4)
        assert result == [Color(10, 20, 30)]

    def test_black_and_white(self):
        pixels = [BLACK, WHITE]
        result = quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), 2)
        assert set(result) == {BLACK, WHITE}

    def test_boxes_split_in_queue_order(self):
        # the dense low box is split once, then the sparse high box gets its turn
        pixels = [BLACK] * 6 + [Color(8, 0, 0), Color(240, 0, 0), Color(248, 0, 0)]
        result = quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), 4)
        assert result == [Color(1, 0, 0), Color(240, 0, 0), Color(248, 0, 0), Color(96, 4, 4)]

    @pytest.mark.parametrize("count", [0, 1, 3, 12, 300, 512])
    def test_invalid_count(self, count):
        pixels = [BLACK, WHITE]
        with pytest.raises(InvalidArgument):
            quantize_by_median_cut(get_color_range(pixels), get_histogram(pixels), count)

    def test_deterministic(self):
        rng = np.random.default_rng(7)
        arr = rng.integers(0, 256, size=(500, 3))
        pixels = [Color(*row) for row in arr.tolist()]
        first = reduce_palette(pixels, 8)
        second = reduce_palette(pixels, 8)
        assert first == second


class TestReducePalette:
    def test_unknown_method(self):
        with pytest.raises(InvalidArgument):
            reduce_palette([BLACK], 2, "kmeans")

    def test_empty_pixels(self):
        with pytest.raises(InvalidArgument):
            reduce_palette([], 2)

    def test_popularity_accepts_any_positive_count(self):
        result = reduce_palette(_cube_samples(64), 3, "popularity")
        assert len(result) == 3

    def test_median_cut_rejects_non_power_of_two(self):
        with pytest.raises(InvalidArgument):
            reduce_palette(_cube_samples(64), 3, "median_cut")

    def test_palette_close_to_source(self):
        pixels = [Color(250, 10, 10)] * 10 + [Color(10, 10, 250)] * 10
        result = reduce_palette(pixels, 2)
        assert set(result) == {Color(250, 10, 10), Color(10, 10, 250)}

    def test_array_roundtrip_input(self):
        pixels = _cube_samples(64)
        histo = ColorHistogram()
        histo.update_from_array(colors_to_array(pixels))
        assert histo.total == len(pixels)
