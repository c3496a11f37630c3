"""
Palette files, hex helpers and image-file checks used by the command line driver.
"""

import json
import logging
import os
from typing import Dict, List, Optional

import requests

from color_lib import Color, InvalidArgument

__all__ = [
    # Functions
    'load_palettes_from_file',
    'save_palettes_to_file',
    'rgb_to_hex',
    'palette_from_hex_list',
    'palette_to_hex_list',
    'import_lospec_palette',
    'validate_image_file',
    # Classes
    'PaletteManager',
]

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.webp'}


def load_palettes_from_file(filepath: str = "palette.json") -> List[Dict]:
    """
    Load custom palettes from JSON file.

    Args:
        filepath: Path to palette JSON file

    Returns:
        List of palette dictionaries with 'name' and 'colors' keys
    """
    if not os.path.exists(filepath):
        return []

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            palettes = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Error loading palettes from {filepath}: {e}")
        return []
    return palettes if isinstance(palettes, list) else []


def save_palettes_to_file(palettes: List[Dict], filepath: str = "palette.json"):
    """
    Save palettes to JSON file.

    Args:
        palettes: List of palette dictionaries
        filepath: Path to save JSON file
    """
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(palettes, f, indent=4)


def rgb_to_hex(rgb) -> str:
    """
    Convert an RGB tuple (or Color) to a hex color string like "#ff0000".
    """
    if isinstance(rgb, Color):
        rgb = rgb.rgb
    return f'#{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}'


def palette_from_hex_list(hex_list: List[str]) -> List[Color]:
    """Convert a list of hex strings to a palette of Color."""
    return [Color.from_hex(h) for h in hex_list]


def palette_to_hex_list(palette: List[Color]) -> List[str]:
    return [rgb_to_hex(c) for c in palette]


def import_lospec_palette(url: str, timeout: float = 10) -> Optional[Dict]:
    """
    Import a palette from a lospec.com URL.

    Args:
        url: Lospec palette URL, e.g. https://lospec.com/palette-list/my-palette

    Returns:
        Dictionary with 'name' and 'colors' keys, or None if the palette is empty

    Raises:
        requests.RequestException: on network or HTTP errors
    """
    slug = url.rstrip('/').split('/')[-1]
    if slug.endswith('.json'):
        slug = slug[:-5]
    api_url = f"https://lospec.com/palette-list/{slug}.json"

    response = requests.get(api_url, timeout=timeout)
    response.raise_for_status()
    data = response.json()

    colors = [Color.from_hex(c) for c in data.get('colors', [])]
    if not colors:
        return None

    return {
        'name': data.get('name', slug),
        'colors': palette_to_hex_list(colors),
    }


def validate_image_file(filepath: str) -> bool:
    """True if the path exists and carries a known image extension."""
    ext = os.path.splitext(filepath)[1].lower()
    return ext in IMAGE_EXTENSIONS and os.path.isfile(filepath)


class PaletteManager:
    """
    Manages custom palettes with loading, saving, and validation.
    """

    def __init__(self, filepath: str = "palette.json"):
        self.filepath = filepath
        self.palettes: List[Dict] = []
        self.load()

    def load(self):
        """Load palettes from file."""
        self.palettes = load_palettes_from_file(self.filepath)

    def save(self):
        """Save palettes to file."""
        save_palettes_to_file(self.palettes, self.filepath)

    def add_palette(self, name: str, colors: List[str]):
        """Add a palette, replacing any palette with the same name."""
        # reject bad hex before touching the file
        palette_from_hex_list(colors)
        for pal in self.palettes:
            if pal['name'] == name:
                pal['colors'] = list(colors)
                self.save()
                return

        self.palettes.append({'name': name, 'colors': list(colors)})
        self.save()

    def get_palette(self, name: str) -> Optional[Dict]:
        """Get palette by name."""
        for pal in self.palettes:
            if pal['name'] == name:
                return pal
        return None

    def get_palette_colors(self, name: str) -> Optional[List[Color]]:
        """Get palette colors as Color values."""
        pal = self.get_palette(name)
        if pal:
            return palette_from_hex_list(pal['colors'])
        return None

    def list_palette_names(self) -> List[str]:
        """Get list of all palette names."""
        return [p['name'] for p in self.palettes]

    def import_lospec(self, url: str) -> str:
        """
        Fetch a Lospec palette and store it.

        Returns:
            The stored palette name

        Raises:
            InvalidArgument: if Lospec returned no colors
        """
        data = import_lospec_palette(url)
        if data is None:
            raise InvalidArgument(f"Lospec palette at {url} has no colors")
        self.add_palette(data['name'], data['colors'])
        return data['name']
