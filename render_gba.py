#!/usr/bin/env python3
"""
Module to parse and render GBA binary image files written by png2gba.

The binary holds:
- an 8-byte header (magic, version, mode, flags, width, height)
- a pixel chunk: 15-bit color words, or 8-bit palette indices
- a palette chunk of 15-bit color words (indexed mode only)
- pixels in raster or 8x8 tile order, depending on the tiled flag

Usage:
    python render_gba.py input.bin output.png
"""
import struct
import numpy as np
from PIL import Image
import argparse

from png2gba import (
    BIN_MAGIC, BIN_MODE_DIRECT, BIN_MODE_INDEXED, BIN_FLAG_TILED,
    CHUNK_PIXELS, CHUNK_PALETTE, CHUNK_END, TileIterator,
)


def parse_header(f):
    """Parse 8-byte header."""
    data = f.read(8)
    if len(data) != 8:
        raise ValueError("File too short for header (expected 8 bytes)")
    magic, version, mode, flags, width, height = struct.unpack('<BBBBHH', data)
    if magic != BIN_MAGIC:
        raise ValueError(f"Unexpected magic number: {magic:02X} (expected {BIN_MAGIC:02X})")
    if mode not in (BIN_MODE_DIRECT, BIN_MODE_INDEXED):
        raise ValueError(f"Unknown mode {mode:02X}")
    return {
        'version': version,
        'indexed': mode == BIN_MODE_INDEXED,
        'tiled': bool(flags & BIN_FLAG_TILED),
        'width': width,
        'height': height,
    }


def parse_chunk_header(f):
    """Parse 8-byte chunk header. Returns (type, id, length) or None at EOF."""
    data = f.read(8)
    if len(data) == 0:
        return None
    if len(data) != 8:
        raise ValueError(f"Unexpected end of file while reading chunk header (got {len(data)} bytes)")
    chunk_type, chunk_id, _reserved, chunk_length = struct.unpack('<BBHI', data)
    return chunk_type, chunk_id, chunk_length


def read_gba_bin(input_file):
    """Read a png2gba binary into a dict with header fields, 'data' and 'palette'."""
    with open(input_file, 'rb') as f:
        info = parse_header(f)
        info['data'] = None
        info['palette'] = None

        while True:
            chunk = parse_chunk_header(f)
            if chunk is None or chunk[0] == CHUNK_END:
                break

            chunk_type, chunk_id, chunk_length = chunk
            payload = f.read(chunk_length)
            if len(payload) != chunk_length:
                raise ValueError(f"Chunk {chunk_type:02X} truncated ({len(payload)} of {chunk_length} bytes)")

            if chunk_type == CHUNK_PIXELS:
                dtype = np.uint8 if info['indexed'] else np.dtype('<u2')
                info['data'] = np.frombuffer(payload, dtype=dtype)
            elif chunk_type == CHUNK_PALETTE:
                info['palette'] = np.frombuffer(payload, dtype=np.dtype('<u2'))
            else:
                print(f"Skipping unknown chunk type {chunk_type:02X}")

    if info['data'] is None:
        raise ValueError("No pixel data found in file")
    if info['data'].size != info['width'] * info['height']:
        raise ValueError(
            f"Pixel chunk holds {info['data'].size} values, expected {info['width'] * info['height']}")
    if info['indexed'] and info['palette'] is None:
        raise ValueError("No palette found in file")
    return info


def color_words_to_rgb(words):
    """Expand 15-bit BGR555 words to 8-bit RGB, replicating the top bits into the low ones."""
    words = np.asarray(words, dtype=np.uint16)
    r = words & 0x1F
    g = (words >> 5) & 0x1F
    b = (words >> 10) & 0x1F
    rgb = np.stack([r, g, b], axis=-1)
    return ((rgb << 3) | (rgb >> 2)).astype(np.uint8)


def decode_pixels(info):
    """Rebuild an (h, w, 3) RGB image from parsed file contents."""
    width, height = info['width'], info['height']

    words = info['data']
    if info['indexed']:
        palette = info['palette']
        if int(words.max(initial=0)) >= len(palette):
            raise ValueError("Palette index out of range")
        words = palette[words]

    rgb = color_words_to_rgb(words)
    img = np.zeros((height, width, 3), dtype=np.uint8)
    for i, (row, col) in enumerate(TileIterator(width, height, info['tiled'])):
        img[row, col] = rgb[i]
    return img


def render_gba_file(input_file, output_path):
    """Parse a png2gba binary and save it as a PNG."""
    info = read_gba_bin(input_file)
    print(f"Header: {info['width']}x{info['height']}, "
          f"{'indexed' if info['indexed'] else 'direct'}, {'tiled' if info['tiled'] else 'linear'}")

    img = decode_pixels(info)
    Image.fromarray(img).save(output_path)
    print(f"Saved {output_path}")
    return img


def main():
    parser = argparse.ArgumentParser(description="Render png2gba binary files to PNG")
    parser.add_argument('input', help='Input binary file (.bin)')
    parser.add_argument('output', help='Output PNG file')
    args = parser.parse_args()

    render_gba_file(args.input, args.output)


if __name__ == "__main__":
    main()
