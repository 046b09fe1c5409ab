"""Mapping between wire colours and the closed colour palette."""

from typing import Dict, Optional, Tuple

from ..models.document import ColorTag


RGBA = Tuple[float, float, float, float]

PALETTE: Dict[ColorTag, RGBA] = {
    ColorTag.CODE_INLINE: (0xC7 / 255, 0x25 / 255, 0x4E / 255, 1.0),  # #c7254e
    ColorTag.QUOTE: (0x66 / 255, 0x66 / 255, 0x66 / 255, 1.0),  # #666666
    ColorTag.LINK: (0x00 / 255, 0x7A / 255, 0xFF / 255, 1.0),  # #007aff
}

HEX_COLORS: Dict[ColorTag, str] = {
    ColorTag.CODE_INLINE: "#c7254e",
    ColorTag.QUOTE: "#666666",
    ColorTag.LINK: "#007aff",
}

# Largest per-channel distance still treated as the same palette entry
TOLERANCE = 0.02


def color_tag_for_rgba(rgba: RGBA) -> ColorTag:
    """Map a wire colour onto the palette; anything unrecognised is the default colour."""
    for tag, reference in PALETTE.items():
        if all(abs(a - b) <= TOLERANCE for a, b in zip(rgba[:3], reference[:3])):
            return tag
    return ColorTag.DEFAULT


def rgba_for_color_tag(tag: ColorTag) -> Optional[RGBA]:
    return PALETTE.get(tag)


def color_tag_for_hex(value: str) -> ColorTag:
    value = value.strip().lower()
    for tag, hex_value in HEX_COLORS.items():
        if hex_value == value:
            return tag
    return ColorTag.DEFAULT
