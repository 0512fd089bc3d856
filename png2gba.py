#!/usr/bin/env python3
"""
Convert PNG images into GBA-ready pixel data.

Output is either a flat array of 15-bit BGR555 color words, or an 8-bit
palette-indexed array plus a color table. Pixels can be emitted in raster
order or regrouped into 8x8 tiles.

Usage:
    python png2gba.py [-p [16|256]] [-t] [-c #ff00ff] [-o out.h] -i image.png
"""
from PIL import Image, UnidentifiedImageError
import struct
import os
import re
import numpy as np
import argparse
import sys

# The GBA always uses 8x8 tiles
TILE_SIZE = 8

# Supported palette capacities (4bpp and 8bpp modes)
PALETTE_SIZES = (16, 256)

DEFAULT_COLOR_KEY = '#ff00ff'

# Binary output format
BIN_MAGIC = 0xB5
BIN_VERSION = 0x01
BIN_MODE_DIRECT = 0x00
BIN_MODE_INDEXED = 0x01
BIN_FLAG_TILED = 0x01
CHUNK_PIXELS = 0x01
CHUNK_PALETTE = 0x02
CHUNK_END = 0xFF


class ConversionError(ValueError):
    """Base class for errors that abort a conversion."""


class PaletteOverflow(ConversionError):
    pass


class InvalidColorFormat(ConversionError):
    pass


class InvalidConfiguration(ConversionError):
    pass


class TraversalPrecondition(ConversionError):
    pass


class UnsupportedImage(ConversionError):
    pass


# ---------------------------------------------------------------------------
# Color words
# ---------------------------------------------------------------------------

def to_color_word(r, g, b):
    """Pack 8-bit RGB into a 15-bit BGR555 word (low 3 bits of each channel are dropped)."""
    return ((b >> 3) << 10) | ((g >> 3) << 5) | (r >> 3)


def parse_hex_triplet(hex24):
    """Parse a '#RRGGBB' literal into a 15-bit color word."""
    if not isinstance(hex24, str) or not re.fullmatch(r'#[0-9A-Fa-f]{6}', hex24):
        raise InvalidColorFormat(f"Color must be in the form #RRGGBB, got {hex24!r}")
    r = int(hex24[1:3], 16)
    g = int(hex24[3:5], 16)
    b = int(hex24[5:7], 16)
    return to_color_word(r, g, b)


def image_to_color_words(pixels):
    """Convert an (h, w, 3|4) uint8 array to an (h, w) array of color words. Alpha is ignored."""
    rgb = np.asarray(pixels, dtype=np.uint16)[..., :3] >> 3
    return (rgb[..., 2] << 10) | (rgb[..., 1] << 5) | rgb[..., 0]


# ---------------------------------------------------------------------------
# Pixel traversal
# ---------------------------------------------------------------------------

class TileIterator:
    """Yield (row, col) for every pixel, in raster order or 8x8 tile order.

    One instance walks the image once; build a new one for another pass.
    """

    def __init__(self, width, height, tiled=False):
        if width <= 0 or height <= 0:
            raise TraversalPrecondition(f"Image dimensions must be positive, got {width}x{height}")
        if tiled and (width % TILE_SIZE or height % TILE_SIZE):
            raise TraversalPrecondition(
                f"Tiled output needs dimensions that are multiples of {TILE_SIZE}, got {width}x{height}")
        self.width = width
        self.height = height
        self.tiled = tiled

        # where we are in the whole image
        self.row = 0
        self.col = 0
        # where we are inside the current tile (0-7)
        self.tile_row = 0
        self.tile_col = 0

    def __iter__(self):
        return self

    def __len__(self):
        return self.width * self.height

    def __next__(self):
        if self.row == self.height:
            raise StopIteration

        coord = (self.row, self.col)

        if not self.tiled:
            self.col += 1
            if self.col >= self.width:
                self.row += 1
                self.col = 0
            return coord

        self.col += 1
        self.tile_col += 1

        # end of a row within the tile
        if self.tile_col >= TILE_SIZE:
            self.row += 1
            self.tile_row += 1
            self.col -= TILE_SIZE
            self.tile_col = 0

            # end of the tile, move right to the next one
            if self.tile_row >= TILE_SIZE:
                self.row -= TILE_SIZE
                self.tile_row = 0
                self.col += TILE_SIZE

            # end of a row of tiles, move down to the next one
            if self.col >= self.width:
                self.tile_col = 0
                self.tile_row = 0
                self.col = 0
                self.row += TILE_SIZE

        return coord


# ---------------------------------------------------------------------------
# Palette
# ---------------------------------------------------------------------------

class Palette:
    """Fixed-capacity color table with first-seen index assignment.

    The last slot is never filled: insertion fails once capacity - 1
    colors are in use. Existing GBA data built with this tool depends on
    which images fit, so the limit is kept as is.
    """

    def __init__(self, capacity):
        if capacity not in PALETTE_SIZES:
            raise InvalidConfiguration(f"Palette must be 16 or 256 colors, got {capacity}")
        self.capacity = capacity
        self.colors = np.zeros(capacity, dtype=np.uint16)
        self.used = 0
        self._index = {}

    def __len__(self):
        return self.used

    def __contains__(self, color):
        return color in self._index

    def insert(self, color):
        """Return the index of color, adding it if it is new."""
        index = self._index.get(color)
        if index is not None:
            return index

        if self.used >= self.capacity - 1:
            raise PaletteOverflow(
                f"Too many colors in image for a {self.capacity}-color palette "
                f"(at most {self.capacity - 1} fit, including the color key)")

        index = self.used
        self.colors[index] = color
        self._index[color] = index
        self.used += 1
        return index

    def entries(self):
        """Full-capacity table; slots past `used` are zero."""
        return self.colors.copy()


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def load_image(input_path):
    """Load an 8-bit RGB or RGBA PNG as an (h, w, channels) uint8 array.

    Pillow reports 16-bit PNGs as RGB/RGBA too, so the raw mode of the
    first tile is checked to turn those away.
    """
    try:
        with Image.open(input_path) as img:
            if img.mode not in ('RGB', 'RGBA'):
                raise UnsupportedImage(f"Image {input_path} is not in the RGB or RGBA format (mode {img.mode})")
            if img.tile and ';16' in str(img.tile[0][3]):
                raise UnsupportedImage(f"Image {input_path} must have 8 bits per channel")
            img.load()
            return np.array(img, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedImage(f"Could not read image {input_path}: {e}") from e


def c_identifier(path):
    """Derive a C identifier from a file path (base name, extension stripped)."""
    name = os.path.splitext(os.path.basename(path))[0]
    name = re.sub(r'[^0-9A-Za-z_]', '_', name)
    if not name or name[0].isdigit():
        name = '_' + name
    return name


def convert_image(pixels, palette_size=None, tiled=False, color_key=DEFAULT_COLOR_KEY, name='image'):
    """Convert a decoded image to GBA pixel data.

    Args:
        pixels: (height, width, 3|4) uint8 array
        palette_size: None for direct 15-bit color, or 16/256 for indexed output
        tiled: emit pixels tile by tile instead of in raster order
        color_key: '#RRGGBB' transparent color, reserved as palette index 0
        name: C identifier used by the output writers

    Returns a dict with the emitted values and, in indexed mode, the palette.
    """
    if palette_size is not None and palette_size not in PALETTE_SIZES:
        raise InvalidConfiguration(f"Palette must be 16 or 256 colors, got {palette_size}")

    key_word = parse_hex_triplet(color_key)

    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
        raise UnsupportedImage(f"Expected an RGB or RGBA pixel array, got shape {pixels.shape}")
    if pixels.dtype != np.uint8:
        raise UnsupportedImage(f"Expected 8 bits per channel, got {pixels.dtype}")

    height, width = pixels.shape[:2]
    coords = TileIterator(width, height, tiled)
    words = image_to_color_words(pixels)

    palette = None
    if palette_size is not None:
        palette = Palette(palette_size)
        palette.insert(key_word)
        data = np.zeros(width * height, dtype=np.uint8)
    else:
        data = np.zeros(width * height, dtype=np.uint16)

    for i, (row, col) in enumerate(coords):
        color = int(words[row, col])
        if palette is not None:
            data[i] = palette.insert(color)
        else:
            data[i] = color

    return {
        'name': name,
        'width': width,
        'height': height,
        'tiled': tiled,
        'palette_size': palette_size,
        'data': data,
        'palette': palette.entries() if palette is not None else None,
        'colors_used': len(palette) if palette is not None else None,
    }


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def _format_values(values, fmt, per_line=TILE_SIZE):
    lines = []
    for i in range(0, len(values), per_line):
        lines.append('    ' + ', '.join(fmt.format(int(v)) for v in values[i:i + per_line]) + ',')
    return '\n'.join(lines)


def format_header(result):
    """Render a conversion result as C header text."""
    name = result['name']
    indexed = result['palette'] is not None

    out = []
    out.append(f"/* {name}.h\n * generated by png2gba */\n\n")
    out.append(f"#define {name}_width {result['width']}\n")
    out.append(f"#define {name}_height {result['height']}\n\n")

    if indexed:
        out.append(f"const unsigned char {name}_data [] = {{\n")
        out.append(_format_values(result['data'], '0x{:02X}'))
    else:
        out.append(f"const unsigned short {name}_data [] = {{\n")
        out.append(_format_values(result['data'], '0x{:04X}'))
    out.append("\n};\n\n")

    if indexed:
        out.append(f"const unsigned short {name}_palette [] = {{\n")
        out.append(_format_values(result['palette'], '0x{:04x}'))
        out.append("\n};\n\n")

    return ''.join(out)


def save_output_header(result, output_path):
    print(f"Saving C header to {output_path}...")
    text = format_header(result)
    with open(output_path, 'w') as f:
        f.write(text)


def pack_output_bin(result):
    """Pack a conversion result as a chunked little-endian binary.

    Header (8 bytes): magic, version, mode, flags, width (u16), height (u16)
    Chunk header (8 bytes): type, id, reserved (u16), length (u32)
    Chunks: 0x01 pixel data, 0x02 palette (indexed mode), 0xFF end
    """
    width, height = result['width'], result['height']
    if width > 0xFFFF or height > 0xFFFF:
        raise UnsupportedImage(f"Binary output holds at most 65535x65535 pixels, got {width}x{height}")

    indexed = result['palette'] is not None
    mode = BIN_MODE_INDEXED if indexed else BIN_MODE_DIRECT
    flags = BIN_FLAG_TILED if result['tiled'] else 0

    if indexed:
        pixel_data = result['data'].astype(np.uint8).tobytes()
    else:
        pixel_data = result['data'].astype('<u2').tobytes()

    out = bytearray()
    out += struct.pack('<BBBBHH', BIN_MAGIC, BIN_VERSION, mode, flags, width, height)

    out += struct.pack('<BBHI', CHUNK_PIXELS, 0x00, 0, len(pixel_data))
    out += pixel_data

    if indexed:
        palette_data = result['palette'].astype('<u2').tobytes()
        out += struct.pack('<BBHI', CHUNK_PALETTE, 0x00, 0, len(palette_data))
        out += palette_data

    out += struct.pack('<BBHI', CHUNK_END, 0x00, 0, 0)
    return bytes(out)


def save_output_bin(result, output_path):
    data = pack_output_bin(result)
    print(f"Saving GBA binary to {output_path}...")
    with open(output_path, 'wb') as f:
        f.write(data)


def default_output_path(input_path, output_format):
    base = input_path[:-len('.png')]
    return base + ('.bin' if output_format == 'bin' else '.h')


def palette_size_arg(value):
    """argparse type for -p: only 16 and 256 are accepted."""
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid palette size: {value!r}")
    if size not in PALETTE_SIZES:
        raise argparse.ArgumentTypeError("Palette must be 16 or 256 colors")
    return size


def build_parser():
    parser = argparse.ArgumentParser(description="Convert PNG images into GBA pixel data")
    parser.add_argument('input_path', nargs='?', metavar='input', help='Input PNG file (RGB or RGBA, 8 bits per channel)')
    parser.add_argument('-i', '--input', dest='input_option', metavar='INPUT', help='Input PNG file, instead of the positional argument')
    parser.add_argument('-o', '--output', help='Output file (default: input name with .h or .bin)')
    parser.add_argument(
        '-p', '--palette',
        type=palette_size_arg,
        nargs='?',
        const=256,
        default=None,
        metavar='{16,256}',
        help='Emit palette indices plus a color table instead of direct colors. '
             'Without a value the palette holds 256 colors; write -p16, or pass the input with -i'
    )
    parser.add_argument('-t', '--tileize', action='store_true', help='Emit pixels in 8x8 tile order')
    parser.add_argument(
        '-c', '--colorkey',
        default=DEFAULT_COLOR_KEY,
        help=f'Transparent color, reserved as palette index 0 (default {DEFAULT_COLOR_KEY})'
    )
    parser.add_argument(
        '--format',
        choices=['header', 'bin'],
        default='header',
        help='Output format: C header (default) or chunked binary'
    )
    return parser


def run(args):
    if not args.input.endswith('.png'):
        raise InvalidConfiguration("File name should end in .png!")

    output_path = args.output or default_output_path(args.input, args.format)
    name = c_identifier(args.input[:-len('.png')])

    print(f"Processing {args.input}")
    pixels = load_image(args.input)
    print(f"  Size: {pixels.shape[1]}x{pixels.shape[0]}, {pixels.shape[2]} channels")
    if args.palette:
        print(f"  Palette: {args.palette} colors, color key {args.colorkey}")
    if args.tileize:
        print(f"  Tileize: ON ({TILE_SIZE}x{TILE_SIZE})")

    result = convert_image(pixels, palette_size=args.palette, tiled=args.tileize,
                           color_key=args.colorkey, name=name)
    if result['palette'] is not None:
        print(f"  Colors used: {result['colors_used']}/{result['palette_size']}")

    if args.format == 'bin':
        save_output_bin(result, output_path)
    else:
        save_output_header(result, output_path)
    return output_path


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if (args.input_path is None) == (args.input_option is None):
        parser.error('give exactly one input file, either positionally or with -i')
    args.input = args.input_path or args.input_option

    try:
        output_path = run(args)
    except (ConversionError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Conversion completed: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
