from __future__ import annotations

from typing import Mapping, Optional, Sequence, Tuple, Union

RGB = Tuple[int, int, int]
ColorLike = Union[str, Sequence[int]]


# Ultralytics-style palette, RGB order.
DEFAULT_PALETTE: Tuple[RGB, ...] = (
    (255, 56, 56),
    (255, 157, 151),
    (255, 112, 31),
    (255, 178, 29),
    (207, 210, 49),
    (72, 249, 10),
    (146, 204, 23),
    (61, 219, 134),
    (26, 147, 52),
    (0, 212, 187),
    (44, 153, 168),
    (0, 194, 255),
    (52, 69, 147),
    (100, 115, 255),
    (0, 24, 236),
    (132, 56, 255),
    (82, 0, 133),
    (203, 56, 255),
    (255, 149, 200),
    (255, 55, 199),
)


def parse_color(value: ColorLike) -> RGB:
    """
    Accept "#RRGGBB" strings or (r, g, b) sequences.
    """

    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Color must look like '#RRGGBB', got {value!r}")
        try:
            return int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16)
        except ValueError as exc:
            raise ValueError(f"Invalid hex color: {value!r}") from exc

    channels = tuple(value)
    if len(channels) != 3 or any(isinstance(c, bool) or not isinstance(c, int) or not 0 <= c <= 255 for c in channels):
        raise ValueError(f"Color must be three integers in [0, 255], got {value!r}")
    return channels  # type: ignore[return-value]


def color_for_class(
    class_id: int,
    label: Optional[str] = None,
    class_colors: Optional[Mapping[str, RGB]] = None,
    palette: Sequence[RGB] = DEFAULT_PALETTE,
) -> RGB:
    """
    Deterministic RGB color for a class: explicit label color first, then the palette cycled by id.
    """

    if class_colors and label is not None:
        color = class_colors.get(label.lower()) or class_colors.get(label)
        if color is not None:
            return color
    return palette[int(class_id) % len(palette)]
