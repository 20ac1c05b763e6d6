#!/usr/bin/env python3
"""
Phenology Camera Colour Script - Mean ROI Colour with Annotated Composites
=========================================================================

Purpose
-------
Summarise the frames of a fixed-position environmental monitoring camera by:
- sampling a rectangular region of interest (ROI) in every frame,
- computing the mean colour of that region,
- rendering a composite (colour swatch + original frame) with captions for
  location, timestamp and the computed colour,
- saving the composite next to its siblings in a fresh output folder.

Frame timestamps are taken from the file name, which must follow the
``<a>_<b>_<YYYYMMDD>_<HHMMSS>_<rest>`` pattern used by the camera network.

Dependencies
------------
- Pillow (PIL)
- NumPy (np)
- OpenCV (cv2)

Usage
-----
    phenocolour <input_folder> --roi X Y W H [options]

    Options:
        --camera ID          Camera identifier, e.g. MC100 (adds the location caption)
        --font PATH          TrueType font for captions (default: Pillow's bundled font)
        --font-size SIZE     Caption size in pixels (default: 22.4)
        --layout LAYOUT      side-by-side (default) or flood
        --on-error POLICY    abort (default) or skip
        --jsonl              Emit JSON reports to stdout
        --no-summary         Suppress summary output
        --dry-run            Process without writing files
        --log-level LEVEL    Logging level (default: WARNING)
"""
from __future__ import annotations

import argparse
import gc
import json
import logging
import os
import sys
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont


# -----------------------------
# Logging setup
# -----------------------------
logger = logging.getLogger(__name__)


# -----------------------------
# Errors
# -----------------------------
class ProcessingError(Exception):
    """Base error for a run. ``kind`` tags the failure category."""

    kind = "ProcessingError"

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        if self.path:
            return f"{self.kind}: {self.message} ({self.path})"
        return f"{self.kind}: {self.message}"


class InputError(ProcessingError):
    """Input folder unusable or output folder already present."""

    kind = "InputError"


class ConfigError(ProcessingError):
    """Invalid ROI, camera id, colour or font."""

    kind = "ConfigError"


class FormatError(ProcessingError):
    """A file whose name or contents don't fit the expected format."""

    kind = "FormatError"


class IoError(ProcessingError):
    """Decode, encode or filesystem failure."""

    kind = "IoError"


class MalformedNameError(FormatError):
    def __init__(self, name: str, reason: str):
        super().__init__(f'File "{name}" has wrong name format: {reason}')
        self.name = name


# Errors that may be skipped per file; everything else ends the run.
PER_FILE_ERRORS = (FormatError, IoError)


# -----------------------------
# Camera locations
# -----------------------------
LOCATIONS: Mapping[str, str] = MappingProxyType({
    "MC100": "Tammela, canopy",
    "MC101": "Tammela, ground",
    "MC102": "Tammela, crown",
    "MC103": "Punkaharju, ground",
    "MC104": "Punkaharju, crown",
    "MC105": "Punkaharju, landscape",
    "MC106": "Hyytiälä, crown",
    "MC107": "Hyytiälä, ground",
    "MC108": "Sodankylä, forest, canopy",
    "MC109": "Sodankylä, forest, crown",
    "MC110": "Sodankylä, forest, ground",
    "MC111": "Sodankylä, wetland, ground",
    "MC112": "Parkano, landscape",
    "MC113": "Suonenjoki, canopy",
    "MC114": "Kenttärova, canopy",
    "MC115": "Kenttärova, crown",
    "MC116": "Kenttärova, ground",
    "MC117": "Paljakka, landscape",
    "MC117-1": "Paljakka, landscape",
    "MC118": "Paljakka, landscape",
    "MC119": "Värriö, canopy",
    "MC120": "Värriö, crown",
    "MC121": "Värriö, ground",
    "MC122": "Lammi, crown",
    "MC123": "Lammi, crown",
    "MC124": "Lammi, landscape",
    "MC125": "Lammi, landscape",
    "MC126": "Lammi, ground",
    "MC127": "Lammi, ground",
    "MC128": "Kaamanen, ground",
    "MC129": "Lompolojänkkä, ground",
    "MC130": "Tvärminne, landscape",
    "MC131": "Jokioinen, landscape",
})


def resolve_location(camera_id: Optional[str], locations: Mapping[str, str] = LOCATIONS) -> Optional[str]:
    """Look up the caption label for a camera id (None passes through)."""
    if camera_id is None:
        return None
    try:
        return locations[camera_id]
    except KeyError:
        raise ConfigError(f"Unknown camera id {camera_id!r}") from None


# -----------------------------
# Configuration
# -----------------------------
DEFAULT_TITLE = "Average colour of forest activity"
DEFAULT_FONT_SIZE = 22.4
DEFAULT_FOREGROUND = (255, 255, 255)
DEFAULT_BACKGROUND = (32, 35, 68)
OUTPUT_SUFFIX = "_green"
LAYOUTS = ("side-by-side", "flood")
ERROR_POLICIES = ("abort", "skip")


@dataclass(frozen=True)
class RegionOfInterest:
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"ROI size must be positive, got {self.width}x{self.height}")
        if self.x < 0 or self.y < 0:
            raise ConfigError(f"ROI origin must not be negative, got ({self.x}, {self.y})")

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class FontStyle:
    """Caption font shared read-only by every frame of a run."""
    font: Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]
    size: float = DEFAULT_FONT_SIZE
    foreground: Tuple[int, int, int] = DEFAULT_FOREGROUND
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND
    origin: Tuple[int, int] = (0, 0)

    @property
    def line_height(self) -> int:
        return int(self.size)


@dataclass(frozen=True)
class ProcessingConfig:
    """Configurable processing parameters."""
    roi: RegionOfInterest
    font: FontStyle
    location: Optional[str] = None                     # caption label, None omits it
    layout: str = "side-by-side"                       # "side-by-side" | "flood"
    title: str = DEFAULT_TITLE                         # second caption line
    on_error: str = "abort"                            # "abort" | "skip"
    jpeg_quality: int = 95                             # used for JPEG outputs only
    sharpness_threshold: float = 100.0                 # blur detection threshold
    brightness_dark_threshold: float = 60.0            # darkness threshold

    def __post_init__(self) -> None:
        if self.layout not in LAYOUTS:
            raise ConfigError(f"Unknown layout {self.layout!r} (expected one of {', '.join(LAYOUTS)})")
        if self.on_error not in ERROR_POLICIES:
            raise ConfigError(f"Unknown error policy {self.on_error!r} (expected one of {', '.join(ERROR_POLICIES)})")


def load_font_style(
    font_path: Optional[str],
    size: float = DEFAULT_FONT_SIZE,
    foreground: Tuple[int, int, int] = DEFAULT_FOREGROUND,
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND,
    origin: Tuple[int, int] = (0, 0),
) -> FontStyle:
    """Load the caption font once per run with explicit errors."""
    if size <= 0:
        raise ConfigError(f"Font size must be positive, got {size}")
    if font_path is None:
        font = ImageFont.load_default(size=size)
    else:
        if not Path(font_path).is_file():
            raise ConfigError("Missing font file", font_path)
        try:
            font = ImageFont.truetype(font_path, size)
        except OSError as e:
            raise ConfigError(f"Could not load font: {e}", font_path) from e
    return FontStyle(font=font, size=size, foreground=foreground, background=background, origin=origin)


def parse_color(value: str) -> Tuple[int, int, int]:
    """Parse a CSS-style colour string ("#202344", "white", "rgb(1,2,3)")."""
    try:
        return ImageColor.getrgb(value)[:3]
    except ValueError as e:
        raise ConfigError(f"Invalid colour {value!r}") from e


# -----------------------------
# File name parsing
# -----------------------------
def parse_date_caption(stem: str) -> str:
    """
    Turn ``<a>_<b>_<YYYYMMDD>_<HHMMSS>_<rest>`` into ``"DD.MM.YYYY, HH:MM:SS"``.

    Plain slicing, no calendar checks: month 13 comes out as written.
    """
    parts = stem.split("_", 4)
    if len(parts) != 5:
        raise MalformedNameError(stem, f"expected 5 underscore separated parts, got {len(parts)}")

    date, time = parts[2], parts[3]
    if len(date) != 8:
        raise MalformedNameError(stem, f"date part {date!r} is not YYYYMMDD")
    if len(time) < 6:
        raise MalformedNameError(stem, f"time part {time!r} is not HHMMSS")

    year, month, day = date[:4], date[4:6], date[6:8]
    hours, minutes, seconds = time[:2], time[2:4], time[4:6]
    return f"{day}.{month}.{year}, {hours}:{minutes}:{seconds}"


# -----------------------------
# Region sampling
# -----------------------------
class Color(NamedTuple):
    red: int
    green: int
    blue: int

    def __str__(self) -> str:
        return f"Rgb([{self.red}, {self.green}, {self.blue}])"


def as_rgb_array(image: Union[Image.Image, np.ndarray]) -> np.ndarray:
    """HxWx3 uint8 array of a frame; arrays pass through as they are."""
    if isinstance(image, np.ndarray):
        return image
    return np.asarray(image if image.mode == "RGB" else image.convert("RGB"))


def mean_color(image: Union[Image.Image, np.ndarray], roi: RegionOfInterest) -> Color:
    """Per-channel floor mean of the pixels inside ``roi``."""
    pixels = as_rgb_array(image)
    height, width = pixels.shape[:2]
    if roi.right > width or roi.bottom > height:
        raise FormatError(
            f"ROI {roi.x},{roi.y} {roi.width}x{roi.height} exceeds image size {width}x{height}"
        )
    pixels = pixels[roi.y:roi.bottom, roi.x:roi.right]
    # uint64 sums never overflow for 8-bit channels at any realistic frame size.
    sums = pixels.reshape(-1, 3).sum(axis=0, dtype=np.uint64)
    red, green, blue = (int(s) for s in sums // np.uint64(roi.area))
    return Color(red, green, blue)


# -----------------------------
# Frame quality assessment
# -----------------------------
def assess_quality(image: Union[Image.Image, np.ndarray], config: ProcessingConfig) -> dict:
    """Return quality metrics; dark or blurry frames skew the mean colour."""
    img_array = as_rgb_array(image)

    # Sharpness (Laplacian variance)
    gray = cv2.cvtColor(img_array, cv2.COLOR_RGB2GRAY)
    sharpness = float(cv2.Laplacian(gray, cv2.CV_64F).var())

    brightness = float(np.mean(img_array))

    return {
        "sharpness": round(sharpness, 2),
        "brightness": round(brightness, 2),
        "is_blurry": sharpness < config.sharpness_threshold,
        "is_dark": brightness < config.brightness_dark_threshold,
    }


def quality_warnings(metrics: dict) -> List[str]:
    warnings = []
    if metrics.get("is_blurry"):
        warnings.append(f"Frame may be blurry (sharpness: {metrics.get('sharpness', 0)})")
    if metrics.get("is_dark"):
        warnings.append(f"Frame may be too dark for a reliable colour (brightness: {metrics.get('brightness', 0)})")
    return warnings


# -----------------------------
# Text metrics and captions
# -----------------------------
class CaptionLine(NamedTuple):
    text: str
    x: int
    y: int


def text_width(font: Union[ImageFont.FreeTypeFont, ImageFont.ImageFont], text: str) -> Optional[int]:
    """
    Pixel width of ``text`` laid out from an ascent-aligned origin.

    The last glyph contributes its ink box rather than its advance, so the
    result covers everything that gets drawn. Returns None for empty text.
    """
    if not text:
        return None
    last = text[-1]
    position = int(font.getlength(text) - font.getlength(last))
    left, _, right, _ = font.getbbox(last)
    return position + max(0, int(right - left))


def layout_captions(texts: Sequence[str], style: FontStyle) -> List[CaptionLine]:
    """Stack captions downwards from the style origin, one font size apart."""
    x, y = style.origin
    return [CaptionLine(text, x, y + i * style.line_height) for i, text in enumerate(texts)]


def draw_caption(draw: ImageDraw.ImageDraw, caption: CaptionLine, style: FontStyle) -> Optional[int]:
    """Draw the background box and then the text on top; returns the box width."""
    width = text_width(style.font, caption.text)
    if width is None:
        return None
    if width > 0:
        draw.rectangle(
            (caption.x, caption.y, caption.x + width - 1, caption.y + style.line_height - 1),
            fill=style.background,
        )
    draw.text((caption.x, caption.y), caption.text, font=style.font, fill=style.foreground)
    return width


# -----------------------------
# Composite rendering
# -----------------------------
def caption_texts(date_caption: str, color: Color, config: ProcessingConfig) -> List[str]:
    first = f"{config.location}, {date_caption}" if config.location else date_caption
    return [first, config.title, str(color)]


def render_canvas(image: Image.Image, color: Color, config: ProcessingConfig) -> Image.Image:
    """Mean colour swatch (left) beside the frame, or the swatch alone for ``flood``."""
    width, height = image.size
    if config.layout == "flood":
        return Image.new("RGB", (width, height), tuple(color))
    canvas = Image.new("RGB", (2 * width, height), tuple(color))
    canvas.paste(image if image.mode == "RGB" else image.convert("RGB"), (width, 0))
    return canvas


def render_composite(image: Image.Image, color: Color, captions: Iterable[str], config: ProcessingConfig) -> Image.Image:
    canvas = render_canvas(image, color, config)
    draw = ImageDraw.Draw(canvas)
    for caption in layout_captions(list(captions), config.font):
        draw_caption(draw, caption, config.font)
    return canvas


# -----------------------------
# Output path generation and saving
# -----------------------------
def output_path_for_input(output_folder: Union[str, Path], input_filename: Union[str, Path]) -> Path:
    """Keep the stem and extension, add the ``_green`` marker: photo.jpg -> photo_green.jpg."""
    in_path = Path(input_filename)
    if not in_path.suffix:
        raise FormatError("Could not obtain the file extension", in_path)
    return Path(output_folder) / f"{in_path.stem}{OUTPUT_SUFFIX}{in_path.suffix}"


def format_for_path(path: Path) -> str:
    image_format = Image.registered_extensions().get(path.suffix.lower())
    if image_format is None or image_format not in Image.SAVE:
        raise FormatError(f"No image encoder for extension {path.suffix!r}", path)
    return image_format


def encode_image(image: Image.Image, image_format: str, config: ProcessingConfig) -> bytes:
    """Encode fully in memory so a failed encode never leaves a file behind."""
    buffer = BytesIO()
    options = {"quality": config.jpeg_quality} if image_format == "JPEG" else {}
    try:
        image.save(buffer, format=image_format, **options)
    except (OSError, ValueError) as e:
        raise IoError(f"Could not encode {image_format} image: {e}") from e
    return buffer.getvalue()


def write_output(data: bytes, output_path: Path) -> None:
    try:
        with open(output_path, "wb") as f:
            f.write(data)
    except OSError as e:
        # Never leave a partial output behind.
        output_path.unlink(missing_ok=True)
        raise IoError(f"Could not write output: {e}", output_path) from e


def prepare_output_folder(output_folder: Union[str, Path]) -> Path:
    """Create a fresh output folder; merging into an existing one is refused."""
    path = Path(output_folder)
    try:
        path.mkdir()
    except FileExistsError:
        raise InputError("Output folder already exists", path) from None
    except OSError as e:
        raise InputError(f"Could not create output folder: {e}", path) from e
    return path


# -----------------------------
# Image processing
# -----------------------------
@dataclass(frozen=True)
class ImageTask:
    input_path: Path
    output_path: Path


def open_image(image_path: Path) -> Image.Image:
    try:
        with Image.open(image_path) as img:
            return img.convert("RGB")
    except OSError as e:
        raise IoError(f"Unable to open image: {e}", image_path) from e


def process_single_image(task: ImageTask, config: ProcessingConfig, dry_run: bool = False) -> dict:
    """
    Process one frame start to finish and return a machine-readable report.

    Depends only on the task and the read-only config, so it can be handed
    to a worker pool unchanged. Raises ProcessingError on failure.
    """
    date_caption = parse_date_caption(task.input_path.stem)
    image_format = format_for_path(task.output_path)

    image = open_image(task.input_path)
    pixels = as_rgb_array(image)
    color = mean_color(pixels, config.roi)
    metrics = assess_quality(pixels, config)
    captions = caption_texts(date_caption, color, config)
    composite = render_composite(image, color, captions, config)
    data = encode_image(composite, image_format, config)

    if not dry_run:
        write_output(data, task.output_path)

    report = {
        "input": str(task.input_path),
        "output": str(task.output_path),
        "line": f"{captions[0]}, {color}",
        "caption": captions[0],
        "color": list(color),
        "bytes": len(data),
        "width": composite.width,
        "height": composite.height,
        "quality_metrics": metrics,
        "warnings": quality_warnings(metrics),
    }

    del image, pixels, composite
    gc.collect()

    return report


# -----------------------------
# Batch processing
# -----------------------------
def image_paths(input_folder: Union[str, Path]) -> List[Path]:
    """Regular files with an extension, in sorted listing order."""
    input_path = Path(input_folder)
    if not input_path.exists() or not input_path.is_dir():
        raise InputError("Input folder not found or not a directory", input_path)
    try:
        entries = sorted(input_path.iterdir())
    except OSError as e:
        raise InputError(f"Could not list input folder: {e}", input_path) from e
    return [entry for entry in entries if entry.is_file() and entry.suffix]


def process_images_in_folder(
    input_folder: Union[str, Path],
    output_folder: Union[str, Path],
    config: ProcessingConfig,
    *,
    emit_jsonl: bool = False,
    show_summary: bool = True,
    dry_run: bool = False,
    log_level: int = logging.WARNING,
) -> int:
    """
    Batch-process frames in a folder sequentially.

    Output policy:
    - One line per processed frame on stdout (a JSON report if emit_jsonl).
    - Errors and warnings go to stderr via logger.
    - If show_summary is True: write a compact summary line to stderr.

    Returns an exit code (0 ok, 1 files skipped). With on_error="abort" the
    first failure is raised instead.
    """
    input_files = image_paths(input_folder)
    if not dry_run:
        prepare_output_folder(output_folder)

    if not input_files:
        logger.warning(f"No image files found in {input_folder}")
        return 0

    total = len(input_files)
    ok = 0
    skipped = 0
    has_warnings = 0

    if log_level <= logging.INFO:
        logger.info(f"Processing {total} image(s)...")

    for entry in input_files:
        try:
            task = ImageTask(entry, output_path_for_input(output_folder, entry))
            report = process_single_image(task, config, dry_run)
        except PER_FILE_ERRORS as e:
            if config.on_error == "abort":
                raise
            logger.warning(f"Skipping {entry.name}: {e}")
            skipped += 1
            continue

        ok += 1
        warnings = report.get("warnings", [])
        if warnings:
            has_warnings += 1
            for warning in warnings:
                logger.warning(f"{entry.name}: {warning}")

        if emit_jsonl:
            print(json.dumps(report, ensure_ascii=False))
        else:
            print(report["line"])

    exit_code = 1 if skipped > 0 else 0

    if show_summary:
        summary_msg = (
            f"Summary: Processed {total} file(s) - "
            f"OK={ok}, Skipped={skipped}, HasWarnings={has_warnings}"
        )
        if log_level <= logging.INFO:
            logger.info(summary_msg)
        else:
            print(summary_msg, file=sys.stderr)

    return exit_code


# -----------------------------
# Main entry point
# -----------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Annotate phenology camera frames with the mean colour of a region of interest.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input_folder", help="Folder containing input frames.")
    parser.add_argument(
        "--output-folder",
        help="Folder for annotated frames; must not exist (default: <input_folder>/Output).",
    )
    parser.add_argument(
        "--roi",
        nargs=4,
        type=int,
        required=True,
        metavar=("X", "Y", "WIDTH", "HEIGHT"),
        help="Region of interest sampled for the mean colour.",
    )
    parser.add_argument("--camera", help="Camera id used to look up the location caption, e.g. MC100.")
    parser.add_argument("--font", help="TrueType font file for captions (default: Pillow's bundled font).")
    parser.add_argument("--font-size", type=float, default=DEFAULT_FONT_SIZE, help="Caption size in pixels.")
    parser.add_argument("--foreground", default="#ffffff", help="Caption text colour.")
    parser.add_argument("--background", default="#202344", help="Caption box colour.")
    parser.add_argument(
        "--text-origin",
        nargs=2,
        type=int,
        default=(0, 0),
        metavar=("X", "Y"),
        help="Top-left corner of the first caption.",
    )
    parser.add_argument("--layout", choices=LAYOUTS, default="side-by-side", help="Composite layout.")
    parser.add_argument("--title", default=DEFAULT_TITLE, help="Second caption line.")
    parser.add_argument(
        "--on-error",
        choices=ERROR_POLICIES,
        default="abort",
        help="Abort the batch on the first bad frame, or skip it with a warning.",
    )
    parser.add_argument(
        "--jsonl",
        action="store_true",
        help="Emit one JSON report per file to stdout (useful for machine processing).",
    )
    parser.add_argument(
        "--no-summary",
        action="store_true",
        help="Suppress the end-of-run summary line.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Process images but don't write output files (for testing).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: WARNING).",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ProcessingConfig:
    font = load_font_style(
        args.font,
        args.font_size,
        foreground=parse_color(args.foreground),
        background=parse_color(args.background),
        origin=tuple(args.text_origin),
    )
    return ProcessingConfig(
        roi=RegionOfInterest(*args.roi),
        font=font,
        location=resolve_location(args.camera),
        layout=args.layout,
        title=args.title,
        on_error=args.on_error,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = getattr(logging, args.log_level.upper())
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )

    emit_jsonl = bool(args.jsonl)
    show_summary = not bool(args.no_summary)
    dry_run = bool(args.dry_run)

    if dry_run:
        logger.info("DRY RUN MODE - no files will be written")

    output_folder = args.output_folder or os.path.join(args.input_folder, "Output")

    try:
        config = config_from_args(args)
        return process_images_in_folder(
            args.input_folder,
            output_folder,
            config,
            emit_jsonl=emit_jsonl,
            show_summary=show_summary and (not emit_jsonl),
            dry_run=dry_run,
            log_level=log_level,
        )
    except ProcessingError as e:
        logger.critical(f"Fatal: {e}")
        return 2
    except Exception as e:
        logger.critical(f"Fatal: Unexpected error: {e}", exc_info=True)
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
