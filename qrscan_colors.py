"""
qrscan Color Resolver
=====================

Turns the --fg/--bg color strings into a dark/light ColorPair, swapping
roles when inversion is requested. Each string is parsed once into 8-bit
RGBA; renderers pick the text or numeric form they need.

Accepted syntax is whatever PIL.ImageColor understands: #rgb, #rgba,
#rrggbb, #rrggbbaa, rgb(...), hsl(...), hsv(...), and CSS color names.
"""

from PIL import ImageColor

from qrscan_types import ColorPair, ColorSpec, InvalidColor


def parse_color(text: str) -> ColorSpec:
    """Parse one color string. Raises InvalidColor."""
    try:
        value = ImageColor.getrgb(text.strip())
    except (ValueError, AttributeError) as exc:
        raise InvalidColor(f"invalid color: {text!r}") from exc

    if len(value) == 3:
        value = (*value, 255)
    return ColorSpec(text=text, rgba=tuple(int(c) for c in value))


def resolve_colors(fg: str, bg: str, invert: bool = False) -> ColorPair:
    """
    Resolve foreground/background strings into dark/light roles.

    Without inversion the foreground is dark and the background light;
    with inversion the roles swap. Both strings are parsed before
    returning, so a bad color fails here and not midway through export.
    """
    dark, light = (bg, fg) if invert else (fg, bg)
    return ColorPair(dark=parse_color(dark), light=parse_color(light),
                     inverted=invert)
