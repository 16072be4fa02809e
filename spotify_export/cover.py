import base64
import io
import textwrap
from typing import List, Sequence, Tuple

from PIL import Image, ImageChops, ImageDraw, ImageFont

# Spotify rejects cover payloads above 256 KB (measured on the base64 body).
MAX_COVER_BYTES = 256 * 1024

DEFAULT_COVER_SIZE = 640
DEFAULT_COVER_COLORS = ("#ff5f6d", "#ffc371")

_FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")


def _hex_to_rgb(value: str) -> Tuple[int, int, int]:
    value = str(value or "").strip().lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if len(value) != 6:
        raise ValueError(f"Not a hex colour: {value!r}")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _load_font(size: int) -> ImageFont.ImageFont:
    for name in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _gradient(size: int, start: Tuple[int, int, int], end: Tuple[int, int, int]) -> Image.Image:
    vertical = Image.linear_gradient("L").resize((size, size))
    horizontal = vertical.rotate(90)
    # (v + h) / 2 runs from the top-left corner to the bottom-right one.
    mask = ImageChops.add(vertical, horizontal, scale=2.0)
    return Image.composite(Image.new("RGB", (size, size), end), Image.new("RGB", (size, size), start), mask)


def _wrap_title(title: str, chars_per_line: int) -> List[str]:
    lines = textwrap.wrap(title, width=chars_per_line, break_long_words=True) or [""]
    if len(lines) > 4:
        lines = lines[:4]
        lines[-1] = lines[-1][: max(1, chars_per_line - 1)].rstrip() + "..."
    return lines


def render_cover(
    title: str,
    *,
    size: int = DEFAULT_COVER_SIZE,
    colors: Sequence[str] = DEFAULT_COVER_COLORS,
) -> Image.Image:
    """Square gradient with the title wrapped and centred."""

    start, end = (_hex_to_rgb(c) for c in (list(colors) + list(DEFAULT_COVER_COLORS))[:2])
    image = _gradient(size, start, end)
    draw = ImageDraw.Draw(image)

    font_size = max(12, size // 9)
    font = _load_font(font_size)
    lines = _wrap_title(str(title or "").strip(), chars_per_line=12)

    boxes = [draw.textbbox((0, 0), line, font=font) for line in lines]
    line_height = int(font_size * 1.25)
    y = (size - line_height * len(lines)) // 2

    for line, (left, top, right, bottom) in zip(lines, boxes):
        x = (size - (right - left)) // 2 - left
        shadow = max(1, size // 200)
        draw.text((x + shadow, y + shadow), line, font=font, fill=(0, 0, 0))
        draw.text((x, y), line, font=font, fill=(255, 255, 255))
        y += line_height

    return image


def encode_cover(image: Image.Image, *, max_bytes: int = MAX_COVER_BYTES) -> str:
    """JPEG + base64, lowering quality (then size) until it fits max_bytes."""

    current = image.convert("RGB")
    while True:
        for quality in (90, 80, 70, 60, 50, 40):
            buf = io.BytesIO()
            current.save(buf, format="JPEG", quality=quality)
            encoded = base64.b64encode(buf.getvalue()).decode("ascii")
            if len(encoded) <= max_bytes:
                return encoded

        if current.width <= 64:
            raise ValueError("Cover image cannot be encoded under the size limit")
        current = current.resize((current.width // 2, current.height // 2))


def generate_cover(
    title: str,
    *,
    size: int = DEFAULT_COVER_SIZE,
    colors: Sequence[str] = DEFAULT_COVER_COLORS,
) -> str:
    return encode_cover(render_cover(title, size=size, colors=colors))
