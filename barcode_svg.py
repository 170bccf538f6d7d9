#!/usr/bin/env python3
"""barcode_svg.py

Renders a finished barcode symbol geometry to SVG.

The geometry (bars, human-readable text, bullseye circles, hexagons) is
computed upstream by a barcode encoder; this module only scales it, offsets it
by a margin and writes the markup.

Key features:
- Deterministic output: same geometry + options => byte-identical SVG.
- Fixed two-decimal coordinates, half-up rounding, no locale effects.
- Streaming write straight to a binary sink (no full-document buffer).
- JSON geometry input and a small CLI for rendering files.

Run:
  python barcode_svg.py render geometry.json output.svg --magnification 4
  python barcode_svg.py validate geometry.json
  python barcode_svg.py --help
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from io import BytesIO
from typing import Any, BinaryIO, cast

logger = logging.getLogger(__name__)

Point = tuple[float, float]

DEFAULT_TITLE = "OkapiBarcode Generated Symbol"
DEFAULT_FONT_NAME = "Helvetica"
DEFAULT_FONT_SIZE = 8.0


# -------------------------
# Errors / Validation
# -------------------------


class ConfigError(ValueError):
    pass


class GeometryError(ConfigError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float)) and not isinstance(x, bool),
        f"{path} must be a number",
    )
    try:
        value = float(x)
    except OverflowError as e:
        raise ConfigError(f"{path} must be finite; got {x!r}") from e
    # json.load accepts NaN / Infinity literals.
    _require(math.isfinite(value), f"{path} must be finite; got {x!r}")
    return value


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _as_list(x: Any, path: str) -> list[Any]:
    _require(isinstance(x, list), f"{path} must be an array")
    return cast(list[Any], x)


# -------------------------
# Geometry model
# -------------------------


@dataclass(frozen=True)
class Color:
    red: int
    green: int
    blue: int

    def __post_init__(self) -> None:
        for name in ("red", "green", "blue"):
            value = getattr(self, name)
            _require(
                isinstance(value, int)
                and not isinstance(value, bool)
                and 0 <= value <= 255,
                f"color channel {name} must be an integer in 0..255; got {value!r}",
            )


BLACK = Color(0, 0, 0)
WHITE = Color(255, 255, 255)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class TextBox:
    # x is the horizontal centre of the label, y its baseline.
    x: float
    y: float
    text: str


@dataclass(frozen=True)
class TargetCircle:
    # Bounding box of the circle; width is the diameter.
    x: float
    y: float
    width: float


@dataclass(frozen=True)
class Hexagon:
    points: tuple[Point, ...]

    def __post_init__(self) -> None:
        if len(self.points) != 6:
            raise GeometryError(
                f"hexagon must have exactly 6 vertices; got {len(self.points)}"
            )


@dataclass(frozen=True)
class Symbol:
    """Read-only symbol geometry as produced by a barcode encoder.

    List order is paint order: later shapes overlay earlier ones. For
    target_circles the order also drives the alternating ink/paper fill,
    so the encoder must list the rings outermost first.
    """

    width: float
    height: float
    content: str | None = None
    font_name: str = DEFAULT_FONT_NAME
    font_size: float = DEFAULT_FONT_SIZE
    rectangles: tuple[Rect, ...] = ()
    texts: tuple[TextBox, ...] = ()
    target_circles: tuple[TargetCircle, ...] = ()
    hexagons: tuple[Hexagon, ...] = ()


@dataclass(frozen=True)
class RenderOptions:
    magnification: float = 1.0
    paper: Color = WHITE
    ink: Color = BLACK
    margin: int = 0

    def __post_init__(self) -> None:
        # Magnification is not checked: zero or negative values give a
        # degenerate but well-formed document.
        _require(
            isinstance(self.margin, int)
            and not isinstance(self.margin, bool)
            and self.margin >= 0,
            f"margin must be a non-negative integer; got {self.margin!r}",
        )


# -------------------------
# Geometry transform
# -------------------------


def transform(v: float, options: RenderOptions) -> float:
    """Map a symbol-space coordinate to output space."""
    return (v * options.magnification) + options.margin


def scale(v: float, options: RenderOptions) -> float:
    """Scale a symbol-space length (width, height, radius, font size)."""
    return v * options.magnification


def document_extent(dim: float, options: RenderOptions) -> int:
    scaled = dim * options.magnification
    if not math.isfinite(scaled):
        raise GeometryError(
            f"document size {dim!r} x {options.magnification!r} is not finite"
        )
    return math.floor(scaled) + (2 * options.margin)


# -------------------------
# Color / number formatting
# -------------------------


def color_hex(color: Color) -> str:
    return f"{color.red:02X}{color.green:02X}{color.blue:02X}"


def parse_color(text: str) -> Color:
    """Parse '#RRGGBB', 'RRGGBB' or 'r,g,b'."""
    s = text.strip()
    if "," in s:
        parts = [p.strip() for p in s.split(",")]
        _require(len(parts) == 3, f"color {text!r} must have three components")
        try:
            r, g, b = (int(p, 10) for p in parts)
        except ValueError as e:
            raise ConfigError(f"color {text!r} has a non-integer component") from e
        return Color(r, g, b)

    if s.startswith("#"):
        s = s[1:]
    _require(
        len(s) == 6 and all(c in "0123456789abcdefABCDEF" for c in s),
        f"color {text!r} must be '#RRGGBB', 'RRGGBB' or 'r,g,b'",
    )
    return Color(int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))


_TWO_PLACES = Decimal("0.01")
# Wide enough to quantize any finite double without raising InvalidOperation.
_DECIMAL_CONTEXT = Context(prec=400)


def format_float(x: float) -> str:
    """Format a coordinate with exactly two decimals.

    Rounds half-up on the shortest decimal form of the float (``repr``), so
    2.675 becomes "2.68" rather than the "2.67" that ``f"{x:.2f}"`` gives.
    Zero is always "0.00", never "-0.00".
    """
    x = float(x)
    if not math.isfinite(x):
        raise GeometryError(f"cannot format non-finite coordinate {x!r}")
    q = Decimal(repr(x)).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP, context=_DECIMAL_CONTEXT
    )
    if q.is_zero():
        q = abs(q)
    return f"{q:f}"


def format_int(n: int) -> str:
    return str(int(n))


# Anything outside the XML 1.0 Char production, lone surrogates included.
_XML_ILLEGAL = re.compile(
    r"[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]"
)


def _check_markup_text(s: str, path: str) -> None:
    m = _XML_ILLEGAL.search(s)
    if m:
        raise GeometryError(
            f"{path} contains character U+{ord(m.group()):04X} "
            "which cannot appear in XML"
        )


def _escape_text(s: str) -> str:
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(s: str) -> str:
    return _escape_text(s).replace('"', "&quot;")


# -------------------------
# SVG writing
# -------------------------


class _MarkupWriter:
    """Encodes lines to UTF-8 and writes them straight to the sink."""

    def __init__(self, out: BinaryIO) -> None:
        self._out = out

    def line(self, text: str) -> None:
        self._out.write(text.encode("utf-8") + b"\n")


@contextmanager
def _scoped_sink(out: BinaryIO) -> Iterator[_MarkupWriter]:
    # The sink belongs to the caller: flush it on every exit path, never close.
    try:
        yield _MarkupWriter(out)
    except BaseException:
        # A broken sink usually fails the flush as well; the write error wins.
        try:
            out.flush()
        except OSError as flush_error:
            logger.debug("flush after failed render also failed: %s", flush_error)
        raise
    out.flush()


def _write_header(
    w: _MarkupWriter, symbol: Symbol, width: int, height: int, ink: str, paper: str
) -> None:
    title = symbol.content if symbol.content else DEFAULT_TITLE
    w.line('<?xml version="1.0" standalone="no"?>')
    w.line('<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN"')
    w.line('   "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">')
    w.line(
        f'<svg width="{format_int(width)}" height="{format_int(height)}" '
        'version="1.1" xmlns="http://www.w3.org/2000/svg">'
    )
    w.line(f"   <desc>{_escape_text(title)}</desc>")
    w.line(f'   <g id="barcode" fill="#{ink}">')
    w.line(
        f'      <rect x="0" y="0" width="{format_float(width)}" '
        f'height="{format_float(height)}" fill="#{paper}" />'
    )


def _write_rects(w: _MarkupWriter, symbol: Symbol, options: RenderOptions) -> None:
    for rect in symbol.rectangles:
        w.line(
            f'      <rect x="{format_float(transform(rect.x, options))}" '
            f'y="{format_float(transform(rect.y, options))}" '
            f'width="{format_float(scale(rect.width, options))}" '
            f'height="{format_float(scale(rect.height, options))}" />'
        )


def _write_texts(
    w: _MarkupWriter, symbol: Symbol, options: RenderOptions, ink: str
) -> None:
    font_family = _escape_attr(symbol.font_name)
    font_size = format_float(scale(symbol.font_size, options))
    for text in symbol.texts:
        w.line(
            f'      <text x="{format_float(transform(text.x, options))}" '
            f'y="{format_float(transform(text.y, options))}" text-anchor="middle"'
        )
        w.line(
            f'         font-family="{font_family}" font-size="{font_size}" '
            f'fill="#{ink}">'
        )
        w.line(f"         {_escape_text(text.text)}")
        w.line("      </text>")


def _write_circles(
    w: _MarkupWriter, symbol: Symbol, options: RenderOptions, ink: str, paper: str
) -> None:
    for i, circle in enumerate(symbol.target_circles):
        # Rings alternate ink/paper starting with ink on the first one.
        fill = ink if i % 2 == 0 else paper
        radius = circle.width / 2
        w.line(
            f'      <circle cx="{format_float(transform(circle.x + radius, options))}" '
            f'cy="{format_float(transform(circle.y + radius, options))}" '
            f'r="{format_float(scale(radius, options))}" fill="#{fill}" />'
        )


def _write_hexagons(
    w: _MarkupWriter, symbol: Symbol, options: RenderOptions
) -> None:
    for hexagon in symbol.hexagons:
        parts: list[str] = []
        for j, (x, y) in enumerate(hexagon.points):
            parts.append("M" if j == 0 else "L")
            parts.append(format_float(transform(x, options)))
            parts.append(format_float(transform(y, options)))
        parts.append("Z")
        w.line(f'      <path d="{" ".join(parts)}" />')


def write_svg(symbol: Symbol, out: BinaryIO, options: RenderOptions) -> None:
    """Stream the SVG document for ``symbol`` to the binary sink ``out``.

    Shapes are written by category (rectangles, text, circles, hexagons), each
    category in list order. Errors raised by the sink propagate unchanged and
    the sink is still flushed; bytes written before the failure stay written.
    """
    width = document_extent(symbol.width, options)
    height = document_extent(symbol.height, options)
    ink = color_hex(options.ink)
    paper = color_hex(options.paper)

    logger.debug(
        "rendering svg %dx%d: %d rects, %d texts, %d circles, %d hexagons",
        width,
        height,
        len(symbol.rectangles),
        len(symbol.texts),
        len(symbol.target_circles),
        len(symbol.hexagons),
    )

    # Reject text that XML cannot carry before the first byte goes out.
    if symbol.content:
        _check_markup_text(symbol.content, "content")
    _check_markup_text(symbol.font_name, "font_name")
    for i, text in enumerate(symbol.texts):
        _check_markup_text(text.text, f"texts[{i}].text")

    with _scoped_sink(out) as w:
        _write_header(w, symbol, width, height, ink, paper)
        _write_rects(w, symbol, options)
        _write_texts(w, symbol, options, ink)
        _write_circles(w, symbol, options, ink, paper)
        _write_hexagons(w, symbol, options)
        w.line("   </g>")
        w.line("</svg>")


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def render_svg_file(symbol: Symbol, out_path: str, options: RenderOptions) -> None:
    # A failed render leaves a truncated file behind; callers own the cleanup.
    _ensure_parent_dir(out_path)
    with open(out_path, "wb") as f:
        write_svg(symbol, f, options)


def render_svg_string(symbol: Symbol, options: RenderOptions) -> str:
    buf = BytesIO()
    write_svg(symbol, buf, options)
    return buf.getvalue().decode("utf-8")


# -------------------------
# Geometry input
# -------------------------


def _parse_point(x: Any, path: str) -> Point:
    pair = _as_list(x, path)
    _require(len(pair) == 2, f"{path} must be an [x, y] pair")
    return (_as_float(pair[0], f"{path}[0]"), _as_float(pair[1], f"{path}[1]"))


def parse_symbol(obj: dict[str, Any]) -> Symbol:
    obj = _as_dict(obj, "root")

    content = obj.get("content")
    if content is not None:
        content = _as_str(content, "content")

    width = _as_float(obj.get("width"), "width")
    height = _as_float(obj.get("height"), "height")
    font_name = _as_str(obj.get("font_name", DEFAULT_FONT_NAME), "font_name")
    font_size = _as_float(obj.get("font_size", DEFAULT_FONT_SIZE), "font_size")

    rectangles: list[Rect] = []
    for i, item in enumerate(_as_list(obj.get("rectangles", []), "rectangles")):
        p = f"rectangles[{i}]"
        r = _as_dict(item, p)
        rectangles.append(
            Rect(
                x=_as_float(r.get("x"), f"{p}.x"),
                y=_as_float(r.get("y"), f"{p}.y"),
                width=_as_float(r.get("width"), f"{p}.width"),
                height=_as_float(r.get("height"), f"{p}.height"),
            )
        )

    texts: list[TextBox] = []
    for i, item in enumerate(_as_list(obj.get("texts", []), "texts")):
        p = f"texts[{i}]"
        t = _as_dict(item, p)
        texts.append(
            TextBox(
                x=_as_float(t.get("x"), f"{p}.x"),
                y=_as_float(t.get("y"), f"{p}.y"),
                text=_as_str(t.get("text"), f"{p}.text"),
            )
        )

    circles: list[TargetCircle] = []
    for i, item in enumerate(_as_list(obj.get("target_circles", []), "target_circles")):
        p = f"target_circles[{i}]"
        c = _as_dict(item, p)
        circles.append(
            TargetCircle(
                x=_as_float(c.get("x"), f"{p}.x"),
                y=_as_float(c.get("y"), f"{p}.y"),
                width=_as_float(c.get("width"), f"{p}.width"),
            )
        )

    hexagons: list[Hexagon] = []
    for i, item in enumerate(_as_list(obj.get("hexagons", []), "hexagons")):
        p = f"hexagons[{i}]"
        pts = _as_list(item, p)
        hexagons.append(
            Hexagon(tuple(_parse_point(pt, f"{p}[{j}]") for j, pt in enumerate(pts)))
        )

    return Symbol(
        width=width,
        height=height,
        content=content,
        font_name=font_name,
        font_size=font_size,
        rectangles=tuple(rectangles),
        texts=tuple(texts),
        target_circles=tuple(circles),
        hexagons=tuple(hexagons),
    )


def parse_options(obj: dict[str, Any]) -> RenderOptions:
    """Read the optional "render" object of a geometry file."""
    render = _as_dict(_as_dict(obj, "root").get("render", {}), "render")
    magnification = _as_float(render.get("magnification", 1.0), "render.magnification")
    margin = _as_int(render.get("margin", 0), "render.margin")
    ink = parse_color(_as_str(render.get("ink", "#000000"), "render.ink"))
    paper = parse_color(_as_str(render.get("paper", "#FFFFFF"), "render.paper"))
    return RenderOptions(magnification=magnification, paper=paper, ink=ink, margin=margin)


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
INPUT JSON SYNTAX

A geometry file describes one finished symbol, in symbol units:

  content: string (optional)
      Encoded data; written into the SVG <desc>. A fixed placeholder is used
      when missing or empty.

  width, height: number (required)
      Symbol size before magnification and margin.

  font_name: string (default "Helvetica")
  font_size: number (default 8)
      Typography for the human-readable text.

  rectangles: [{"x", "y", "width", "height"}, ...]
      Bars/modules, painted in order with the ink color.

  texts: [{"x", "y", "text"}, ...]
      Labels; x is the horizontal centre, y the baseline.

  target_circles: [{"x", "y", "width"}, ...]
      Bullseye rings as bounding boxes (width = diameter), outermost first.
      Fills alternate ink, paper, ink, ...

  hexagons: [[[x, y] x 6], ...]
      Closed hexagonal modules (exactly six vertices each).

  render: object (optional)
      render.magnification: number (default 1)
      render.margin: integer >= 0 (default 0)
      render.ink: color (default "#000000")
      render.paper: color (default "#FFFFFF")

      Colors are "#RRGGBB", "RRGGBB" or "r,g,b". Command-line flags override
      these values.

Output size is floor(width * magnification) + 2 * margin (same for height);
every coordinate is (value * magnification) + margin.
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="barcode_svg.py",
        description="Render barcode symbol geometry to SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser(
        "render",
        help="Render a geometry JSON file to an SVG file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("geometry", help="Path to the input geometry JSON.")
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument(
        "--magnification", type=float, default=None, help="Scale factor."
    )
    pr.add_argument(
        "--margin", type=int, default=None, help="Margin in output units."
    )
    pr.add_argument("--ink", default=None, help="Foreground color.")
    pr.add_argument("--paper", default=None, help="Background color.")

    pv = sub.add_parser(
        "validate",
        help="Validate a geometry JSON file and print a brief summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("geometry", help="Path to the input geometry JSON.")

    return p


# -------------------------
# Commands
# -------------------------


def _merge_options(base: RenderOptions, args: argparse.Namespace) -> RenderOptions:
    magnification = base.magnification
    if args.magnification is not None:
        # argparse's float() accepts "nan" and "inf".
        magnification = _as_float(args.magnification, "--magnification")
    return RenderOptions(
        magnification=magnification,
        paper=base.paper if args.paper is None else parse_color(args.paper),
        ink=base.ink if args.ink is None else parse_color(args.ink),
        margin=base.margin if args.margin is None else args.margin,
    )


def cmd_render(geometry_path: str, output_path: str, args: argparse.Namespace) -> None:
    obj = load_json(geometry_path)
    symbol = parse_symbol(obj)
    options = _merge_options(parse_options(obj), args)
    render_svg_file(symbol, output_path, options)
    logger.info("wrote %s", output_path)


def cmd_validate(geometry_path: str) -> None:
    obj = load_json(geometry_path)
    symbol = parse_symbol(obj)
    options = parse_options(obj)

    print(f"content: {symbol.content if symbol.content else DEFAULT_TITLE}")
    print(f"symbol: {symbol.width:g}x{symbol.height:g}")
    print(
        f"output: {document_extent(symbol.width, options)}x"
        f"{document_extent(symbol.height, options)} "
        f"(magnification={options.magnification:g} margin={options.margin})"
    )
    print(
        f"shapes: rectangles={len(symbol.rectangles)} texts={len(symbol.texts)} "
        f"circles={len(symbol.target_circles)} hexagons={len(symbol.hexagons)}"
    )


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="[%(asctime)s] [%(levelname)s] %(message)s",
        )

    try:
        if args.cmd == "render":
            cmd_render(args.geometry, args.output, args)
        elif args.cmd == "validate":
            cmd_validate(args.geometry)
        else:
            raise AssertionError("unreachable")
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
