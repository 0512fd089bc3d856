import numpy as np
import pytest

from png2gba import (
    convert_image, to_color_word, parse_hex_triplet,
    PaletteOverflow, InvalidColorFormat, InvalidConfiguration, TraversalPrecondition, UnsupportedImage,
)

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
MAGENTA = (255, 0, 255)


def solid(width, height, color, channels=3):
    pixels = np.zeros((height, width, channels), dtype=np.uint8)
    pixels[:, :, :3] = color
    return pixels


def test_solid_red_direct():
    result = convert_image(solid(8, 8, RED))
    assert result['palette'] is None
    assert result['data'].dtype == np.uint16
    assert result['data'].tolist() == [0x001F] * 64
    assert (result['width'], result['height']) == (8, 8)


def test_two_colors_indexed():
    pixels = solid(16, 16, BLUE)
    pixels[:, 8:] = GREEN
    result = convert_image(pixels, palette_size=16)

    palette = result['palette']
    assert len(palette) == 16
    assert palette[0] == parse_hex_triplet('#ff00ff')
    assert palette[1] == to_color_word(*BLUE)
    assert palette[2] == to_color_word(*GREEN)
    assert palette[3:].tolist() == [0] * 13
    assert set(result['data'].tolist()) == {1, 2}
    assert result['data'].dtype == np.uint8
    assert result['colors_used'] == 3


def test_first_seen_order_follows_traversal():
    # raster order reaches red on row 0 before green; tile order
    # finishes the green-filled first tile before it gets to red
    pixels = solid(16, 8, BLUE)
    pixels[1:, :8] = GREEN
    pixels[0, 8:] = RED
    linear = convert_image(pixels, palette_size=16)
    tiled = convert_image(pixels, palette_size=16, tiled=True)
    assert linear['palette'][1:4].tolist() == [to_color_word(*c) for c in (BLUE, RED, GREEN)]
    assert tiled['palette'][1:4].tolist() == [to_color_word(*c) for c in (BLUE, GREEN, RED)]


def test_tiled_output_order():
    pixels = solid(16, 8, RED)
    pixels[:, 8:] = BLUE
    red, blue = to_color_word(*RED), to_color_word(*BLUE)

    linear = convert_image(pixels)['data'].tolist()
    assert linear[:16] == [red] * 8 + [blue] * 8

    tiled = convert_image(pixels, tiled=True)['data'].tolist()
    assert tiled == [red] * 64 + [blue] * 64


def test_sixteen_colors_overflow_16_palette():
    pixels = np.zeros((8, 8, 3), dtype=np.uint8)
    for i in range(64):
        pixels[i // 8, i % 8] = ((i % 16) * 8, 0, 0)
    with pytest.raises(PaletteOverflow):
        convert_image(pixels, palette_size=16)
    # fourteen colors plus the key fit
    pixels[:, :, 0] = np.minimum(pixels[:, :, 0], 13 * 8)
    result = convert_image(pixels, palette_size=16)
    assert result['colors_used'] == 15


def test_sixteen_colors_fit_256_palette():
    pixels = np.zeros((8, 8, 3), dtype=np.uint8)
    for i in range(64):
        pixels[i // 8, i % 8] = ((i % 16) * 8, 0, 0)
    result = convert_image(pixels, palette_size=256)
    assert result['colors_used'] == 17
    assert result['data'].tolist()[:16] == list(range(1, 17))


def test_color_key_pixels_use_index_zero():
    pixels = solid(8, 8, RED)
    pixels[0, 0] = MAGENTA
    result = convert_image(pixels, palette_size=16)
    assert result['data'][0] == 0
    assert result['data'][1] == 1


def test_custom_color_key():
    result = convert_image(solid(8, 8, RED), palette_size=16, color_key='#ff0000')
    assert result['palette'][0] == 0x001F
    assert set(result['data'].tolist()) == {0}


def test_alpha_is_ignored():
    rgb = solid(8, 8, GREEN)
    rgba = solid(8, 8, GREEN, channels=4)
    rgba[:, :, 3] = 0
    assert convert_image(rgba)['data'].tolist() == convert_image(rgb)['data'].tolist()


def test_quantized_duplicates_share_an_index():
    pixels = solid(8, 8, (0x40, 0x40, 0x40))
    pixels[4:] = (0x47, 0x47, 0x47)
    result = convert_image(pixels, palette_size=16)
    assert result['colors_used'] == 2
    assert set(result['data'].tolist()) == {1}


@pytest.mark.parametrize('size', [0, 8, 32, 255])
def test_rejects_bad_palette_size(size):
    with pytest.raises(InvalidConfiguration):
        convert_image(solid(8, 8, RED), palette_size=size)


def test_rejects_bad_color_key_in_direct_mode():
    with pytest.raises(InvalidColorFormat):
        convert_image(solid(8, 8, RED), color_key='ff00ff')


def test_color_key_checked_before_traversal():
    with pytest.raises(InvalidColorFormat):
        convert_image(solid(12, 8, RED), tiled=True, color_key='#zz0000')


def test_tiled_rejects_partial_tiles():
    with pytest.raises(TraversalPrecondition):
        convert_image(solid(12, 8, RED), tiled=True)
    assert len(convert_image(solid(12, 8, RED))['data']) == 96


def test_rejects_non_rgb_arrays():
    with pytest.raises(UnsupportedImage):
        convert_image(np.zeros((8, 8), dtype=np.uint8))
    with pytest.raises(UnsupportedImage):
        convert_image(np.zeros((8, 8, 2), dtype=np.uint8))
    with pytest.raises(UnsupportedImage):
        convert_image(np.zeros((8, 8, 3), dtype=np.uint16))
