#!/usr/bin/env python3
"""
CLI module for Palette Pie - Command-Line Interface

Reduces images to a small palette and re-renders them with optional
error-diffusion dithering, driven by a JSON job file. Uses Rich for
terminal output.
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional, List, Dict, Any

import requests
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.panel import Panel
from rich.table import Table
from PIL import Image as PILImage

from color_lib import Color, InvalidArgument
from dithering_lib import DitherMode, get_dither_strategy
from image_lib import DecodeFailure, Image, get_pixels
from quantize_lib import PALETTE_METHODS
from palette_utils import IMAGE_EXTENSIONS, PaletteManager, validate_image_file
from config_manager import ConfigManager


console = Console()

logger = logging.getLogger('palette_pie')

DEFAULT_SETTINGS_FILE = "palette_pie.json"


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """
    Setup logging with Rich handler for terminal output.

    Args:
        verbose: Enable verbose (DEBUG) logging
        quiet: Suppress all but ERROR messages
        log_file: Optional path to log file
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers = []

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True
    )
    handlers.append(rich_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )

    logger.setLevel(level)
    return logger


# ==================== Config Schema & Validation ====================

VALID_MODES = ["image", "folder"]
VALID_PALETTE_SOURCES = list(PALETTE_METHODS)
VALID_DITHER_MODES = [mode.value for mode in DitherMode]
VALID_FILTERS = ["blur", "grayscale", "invert"]


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _is_power_of_two(n: int) -> bool:
    return n > 0 and not n & (n - 1)


def validate_config(config: Dict[str, Any], config_path: Path,
                    settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Validate a job configuration and return it normalized.

    Args:
        config: Raw config dictionary
        config_path: Path to config file (for resolving relative paths)
        settings: Source of defaults for omitted fields

    Returns:
        Validated and normalized config

    Raises:
        ConfigValidationError: If validation fails
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a JSON object")

    errors = []

    if "input" not in config:
        errors.append("Missing required field: 'input'")

    if "output" not in config:
        errors.append("Missing required field: 'output'")

    mode = config.get("mode")
    if mode and mode not in VALID_MODES:
        errors.append(f"Invalid mode: '{mode}'. Must be one of: {VALID_MODES}")

    filters = config.get("filters", [])
    if not isinstance(filters, list):
        errors.append("'filters' must be a list")
    else:
        for name in filters:
            if name not in VALID_FILTERS:
                errors.append(f"Invalid filter: '{name}'. Must be one of: {VALID_FILTERS}")

    if "dithering" in config:
        dith = config["dithering"]
        if not isinstance(dith, dict):
            errors.append("'dithering' must be an object/dictionary")
        elif "mode" in dith and dith["mode"] not in VALID_DITHER_MODES:
            errors.append(f"Invalid dither mode: '{dith['mode']}'. Must be one of: {VALID_DITHER_MODES}")

    if "palette" in config:
        pal = config["palette"]
        if not isinstance(pal, dict):
            errors.append("'palette' must be an object/dictionary")
        else:
            source = pal.get("source")
            if source is not None and not isinstance(source, str):
                errors.append("'palette.source' must be a string")
            num_colors = pal.get("num_colors")
            if num_colors is not None:
                if isinstance(num_colors, bool) or not isinstance(num_colors, int):
                    errors.append("'palette.num_colors' must be an integer")
                elif num_colors <= 0:
                    errors.append("'palette.num_colors' must be positive")
                elif (source in (None, "median_cut") or (isinstance(source, str) and source.startswith("file:"))) \
                        and not (_is_power_of_two(num_colors) and 2 <= num_colors <= 256):
                    errors.append("'palette.num_colors' must be a power of two between 2 and 256 for median cut")

    if "final_resize" in config:
        resize = config["final_resize"]
        if not isinstance(resize, dict):
            errors.append("'final_resize' must be an object/dictionary")
        elif "multiplier" in resize:
            try:
                if int(resize["multiplier"]) <= 0:
                    errors.append("'final_resize.multiplier' must be positive")
            except (ValueError, TypeError):
                errors.append("'final_resize.multiplier' must be an integer")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  • {e}" for e in errors)
        raise ConfigValidationError(error_msg)

    # Resolve paths relative to the config file
    config_dir = config_path.parent
    for key in ("input", "output"):
        path = Path(config[key])
        if not path.is_absolute():
            path = (config_dir / path).resolve()
        config[key] = str(path)

    if not Path(config["input"]).exists():
        raise ConfigValidationError(f"Input file/directory not found: {config['input']}")

    settings = settings or ConfigManager(DEFAULT_SETTINGS_FILE, create=False)
    defaults = settings.get("defaults", default={})

    config.setdefault("mode", None)
    config.setdefault("filters", [])
    config.setdefault("dithering", {})
    config.setdefault("palette", {})
    config.setdefault("final_resize", {})

    config["dithering"].setdefault("enabled", defaults.get("dithering_enabled", True))
    config["dithering"].setdefault("mode", defaults.get("dither_mode", "floyd_steinberg"))

    config["palette"].setdefault("source", defaults.get("palette_source", "median_cut"))
    config["palette"].setdefault("num_colors", defaults.get("num_colors", 16))
    config["palette"].setdefault("palette_file", settings.get("palette_file", default="palette.json"))

    config["final_resize"].setdefault("enabled", False)
    config["final_resize"].setdefault("multiplier", defaults.get("final_resize_multiplier", 2))

    return config


def load_config(config_path: Path, settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Load and validate configuration from JSON file.

    Raises:
        ConfigValidationError: If loading or validation fails
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in config file:\n  Line {e.lineno}: {e.msg}")
    except OSError as e:
        raise ConfigValidationError(f"Failed to load config file: {e}")

    return validate_config(config, config_path, settings)


def detect_mode(input_path: Path) -> str:
    """
    Auto-detect processing mode based on input path.

    Returns:
        Mode string: "image" or "folder"
    """
    if input_path.is_dir():
        return "folder"

    if input_path.suffix.lower() in IMAGE_EXTENSIONS:
        return "image"
    raise ConfigValidationError(f"Cannot determine mode for file extension: {input_path.suffix}")


# ==================== Palette Setup ====================

def _custom_palette(name: str, palette_mgr: PaletteManager) -> List[Color]:
    colors = palette_mgr.get_palette_colors(name)
    if colors is None:
        available = ", ".join(palette_mgr.list_palette_names()) or "none"
        raise ConfigValidationError(f"Custom palette not found: {name} (available: {available})")
    logger.info(f"Loading custom palette: [cyan]{name}[/] ({len(colors)} colors)")
    return colors


def setup_palette_from_config(palette_config: Dict[str, Any], source_image: Image,
                              palette_mgr: Optional[PaletteManager] = None) -> List[Color]:
    """
    Build the palette described by the configuration.

    Args:
        palette_config: Palette configuration from config
        source_image: Source image for palette generation

    Returns:
        Palette as a list of Color
    """
    source = palette_config["source"]
    num_colors = palette_config["num_colors"]
    if palette_mgr is None:
        palette_mgr = PaletteManager(palette_config.get("palette_file", "palette.json"))

    if source in PALETTE_METHODS:
        logger.info(f"Generating palette: [cyan]{source}[/] ({num_colors} colors)")
        palette = source_image.palette(num_colors, source)

    elif source.startswith("file:"):
        file_path = source[5:]
        if not Path(file_path).exists():
            raise ConfigValidationError(f"Palette source image not found: {file_path}")
        logger.info(f"Extracting palette from: [cyan]{file_path}[/] ({num_colors} colors)")
        palette = get_pixels(file_path).palette(num_colors, "median_cut")

    elif source.startswith("lospec:"):
        url = source[7:]
        logger.info(f"Importing Lospec palette: [cyan]{url}[/]")
        try:
            name = palette_mgr.import_lospec(url)
        except requests.RequestException as e:
            raise ConfigValidationError(f"Failed to import Lospec palette {url}: {e}") from e
        logger.info(f"Stored as custom palette [cyan]{name}[/] in {palette_mgr.filepath}")
        palette = palette_mgr.get_palette_colors(name)

    elif source.startswith("custom:"):
        palette = _custom_palette(source[7:], palette_mgr)

    else:
        palette = _custom_palette(source, palette_mgr)

    logger.info(f"[green]✓[/] Palette ready with {len(palette)} colors")
    return palette


def show_palette_table(palette: List[Color]):
    """Print the palette with its informational color conversions."""
    table = Table(title="Palette", border_style="cyan")
    for column in ("#", "Swatch", "Hex", "HSL", "HSV", "CMYK", "Lab"):
        table.add_column(column)
    for i, color in enumerate(palette):
        h, s, l = color.to_hsl()
        hh, hs, hv = color.to_hsv()
        c, m, y, k = color.to_cmyk()
        lab_l, lab_a, lab_b = color.to_lab()
        table.add_row(
            str(i),
            f"[on {color.hex[:7]}]    [/]",
            color.hex,
            f"{h:.0f}°, {s:.0f}%, {l:.0f}%",
            f"{hh:.0f}°, {hs:.0f}%, {hv:.0f}%",
            f"{c:.0f}, {m:.0f}, {y:.0f}, {k:.0f}",
            f"{lab_l:.1f}, {lab_a:.1f}, {lab_b:.1f}",
        )
    console.print(table)


# ==================== Image Processing ====================

def apply_filters(image: Image, filters: List[str]):
    for name in filters:
        logger.info(f"Applying filter: [cyan]{name}[/]")
        if name == "blur":
            image.blur("box")
        elif name == "grayscale":
            image.grayscale()
        elif name == "invert":
            image.invert()


def process_image(image: Image, config: Dict[str, Any],
                  palette: Optional[List[Color]] = None,
                  palette_mgr: Optional[PaletteManager] = None) -> PILImage.Image:
    """
    Run filters, palette reduction and dithering on a decoded image.

    Returns:
        The result as a PIL image, resized when final_resize is enabled
    """
    apply_filters(image, config["filters"])

    if config["dithering"]["enabled"]:
        dither_mode = config["dithering"]["mode"]
        if dither_mode.startswith("monochrome"):
            palette = []
        elif palette is None:
            palette = setup_palette_from_config(config["palette"], image, palette_mgr)
        if palette and config.get("palette_info"):
            show_palette_table(palette)
        logger.info(f"Applying dithering: [cyan]{dither_mode}[/]")
        get_dither_strategy(dither_mode).dither(image.pixels, image.width, palette)
        logger.info("[green]✓[/] Dithering complete")

    result = image.to_pil()
    if config["final_resize"]["enabled"]:
        multiplier = int(config["final_resize"]["multiplier"])
        new_size = (image.width * multiplier, image.height * multiplier)
        logger.info(f"Applying final resize (×{multiplier})...")
        result = result.resize(new_size, PILImage.Resampling.NEAREST)
        logger.info(f"[green]✓[/] Resized to {new_size[0]}x{new_size[1]}")
    return result


def _save(result: PILImage.Image, output_path: Path):
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() in ('.jpg', '.jpeg', '.bmp'):
        result = result.convert('RGB')
    result.save(output_path)


def process_single_image(config: Dict[str, Any], palette_mgr: Optional[PaletteManager] = None) -> bool:
    """
    Process a single image.

    Returns:
        True if successful, False otherwise
    """
    input_path = Path(config["input"])
    output_path = Path(config["output"])
    try:
        logger.info(f"Loading image: [cyan]{input_path.name}[/]")
        image = get_pixels(input_path)
        logger.info(f"Image size: [cyan]{image.width}x{image.height}[/]")

        result = process_image(image, config, palette_mgr=palette_mgr)

        logger.info(f"Saving to: [cyan]{output_path}[/]")
        _save(result, output_path)

        size_kb = output_path.stat().st_size / 1024
        logger.info(f"[bold green]✓ Image saved successfully![/] ({size_kb:.1f} KB)")
        return True

    except (DecodeFailure, InvalidArgument, ConfigValidationError, OSError) as e:
        logger.error(f"Failed to process image: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        return False


def process_folder(config: Dict[str, Any], palette_mgr: Optional[PaletteManager] = None) -> bool:
    """
    Process every image in the input directory into the output directory.
    Fixed palettes (custom, Lospec, file) are built once and shared.

    Returns:
        True if every image succeeded
    """
    input_dir = Path(config["input"])
    output_dir = Path(config["output"])
    files = sorted(p for p in input_dir.iterdir() if validate_image_file(str(p)))
    if not files:
        logger.error(f"No images found in {input_dir}")
        return False

    shared_palette = None
    failures = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    ) as progress:
        task = progress.add_task("Processing images...", total=len(files))
        for path in files:
            progress.update(task, description=f"Processing {path.name}")
            try:
                image = get_pixels(path)
                if shared_palette is None and config["dithering"]["enabled"] \
                        and config["palette"]["source"] not in PALETTE_METHODS:
                    shared_palette = setup_palette_from_config(config["palette"], image, palette_mgr)
                result = process_image(image, config, shared_palette, palette_mgr)
                _save(result, output_dir / path.name)
            except (DecodeFailure, InvalidArgument, ConfigValidationError, OSError) as e:
                failures += 1
                logger.error(f"Failed to process {path.name}: {e}")
            progress.advance(task)

    logger.info(f"Processed {len(files) - failures}/{len(files)} images")
    return failures == 0


def show_banner():
    """Display application banner."""
    banner = """
[bold cyan]╔═══════════════════════════════════════╗[/]
[bold cyan]║[/]     [bold white]Palette Pie CLI[/] [dim]- v1.0[/]          [bold cyan]║[/]
[bold cyan]║[/]  Palette Reduction & Dithering Tool   [bold cyan]║[/]
[bold cyan]╚═══════════════════════════════════════╝[/]
"""
    console.print(banner)


def show_help():
    """Display detailed help information."""
    help_text = """
[bold cyan]Palette Pie CLI - Usage[/]

[bold]Basic Usage:[/]
  palette-cli <job.json>            Process with JSON config
  palette-cli --help                Show this help
  palette-cli --example-config      Generate example config
  palette-cli --list-modes          List dithering modes

[bold]Options:[/]
  --verbose, -v       Enable verbose output
  --quiet, -q         Suppress all but error messages
  --log-file FILE     Write log to file
  --settings FILE     Read defaults from (and record recent files in) FILE
  --palettes FILE     Custom palette file (default: from settings)
  --palette-info      Print the palette with HSL/HSV/CMYK/Lab values
"""
    console.print(help_text)
    show_modes()


def show_modes():
    console.print("  [bold]Dithering Modes:[/]")
    for mode in DitherMode:
        console.print(f"    • [cyan]{mode.value}[/]")
    console.print("  [bold]Palette Sources:[/]")
    for source in VALID_PALETTE_SOURCES + ["custom:<name>", "file:<image>", "lospec:<url>"]:
        console.print(f"    • [cyan]{source}[/]")
    console.print()


def generate_example_config():
    """Print an example job file."""
    example = {
        "_comment": "Palette Pie CLI Configuration",
        "input": "path/to/input.png",
        "output": "path/to/output.png",
        "mode": "image",
        "filters": [],
        "palette": {
            "_comment_source": "Options: median_cut, popularity, file:path.png, custom:palette_name, lospec:url",
            "source": "median_cut",
            "_comment_num_colors": "Power of two 2-256 for median_cut; ignored for custom palettes",
            "num_colors": 16
        },
        "dithering": {
            "enabled": True,
            "mode": "floyd_steinberg"
        },
        "final_resize": {
            "enabled": False,
            "multiplier": 2
        }
    }

    example_json = json.dumps(example, indent=4)
    console.print("\n[bold cyan]Example Configuration:[/]\n")
    console.print(Panel(example_json, title="job.json", border_style="cyan"))
    console.print("\n[dim]Save this to a .json file and modify as needed.[/]\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Palette Pie CLI - Palette Reduction & Dithering Tool",
        add_help=False
    )
    parser.add_argument('config', nargs='?', help='Path to JSON configuration file')
    parser.add_argument('--help', '-h', action='store_true', help='Show help')
    parser.add_argument('--example-config', action='store_true', help='Generate example config')
    parser.add_argument('--list-modes', action='store_true', help='List dithering modes')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--quiet', '-q', action='store_true', help='Quiet mode (errors only)')
    parser.add_argument('--log-file', type=str, help='Log to file')
    parser.add_argument('--settings', type=str, help='Settings file with defaults')
    parser.add_argument('--palettes', type=str, help='Custom palette file')
    parser.add_argument('--palette-info', action='store_true', help='Print palette details')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.help:
        show_banner()
        show_help()
        sys.exit(0)

    if args.example_config:
        show_banner()
        generate_example_config()
        sys.exit(0)

    if args.list_modes:
        show_modes()
        sys.exit(0)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    if not args.quiet:
        show_banner()

    if not args.config:
        console.print("[bold red]Error:[/] No configuration file specified.\n")
        console.print("Usage: palette-cli <job.json>")
        console.print("       palette-cli --help\n")
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    settings = ConfigManager(args.settings or DEFAULT_SETTINGS_FILE, create=bool(args.settings))

    logger.info(f"Loading configuration from: [cyan]{config_path}[/]")
    try:
        config = load_config(config_path, settings)
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        sys.exit(1)

    logger.info("[green]✓[/] Configuration validated")
    config["palette_info"] = args.palette_info

    if not config["mode"]:
        try:
            config["mode"] = detect_mode(Path(config["input"]))
            logger.info(f"Auto-detected mode: [cyan]{config['mode']}[/]")
        except ConfigValidationError as e:
            logger.error(f"{e}")
            sys.exit(1)

    logger.info(f"Input:  [cyan]{config['input']}[/]")
    logger.info(f"Output: [cyan]{config['output']}[/]")
    logger.info(f"Mode:   [cyan]{config['mode']}[/]")
    if config["dithering"]["enabled"]:
        logger.info(f"Dithering: [yellow]{config['dithering']['mode']}[/]")
        logger.info(f"Palette: [yellow]{config['palette']['source']}[/] ({config['palette']['num_colors']} colors)")
    else:
        logger.info("Dithering: [dim]disabled[/]")
    logger.info("")

    palette_mgr = PaletteManager(args.palettes or config["palette"]["palette_file"])

    if config["mode"] == "image":
        success = process_single_image(config, palette_mgr)
    else:
        success = process_folder(config, palette_mgr)

    if success and args.settings:
        settings.add_recent_file(config["input"])
        settings.update_last_path("image", config["input"])
        settings.update_last_path("save", config["output"])
        settings.save()

    if success:
        logger.info("")
        logger.info("[bold green]✓ Processing complete![/]")
        sys.exit(0)
    else:
        logger.error("")
        logger.error("[bold red]✗ Processing failed![/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
