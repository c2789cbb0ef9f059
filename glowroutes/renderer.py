"""PIL-based key renderer for the Glow Routes deck."""

from dataclasses import dataclass

from PIL import Image, ImageDraw, ImageFont

SIZE = (96, 96)

PHASE_COLORS = {
    "idle": "#111827",
    "intro": "#1e1b4b",
    "showing": "#312e81",
    "waiting": "#1e3a5f",
    "hit": "#14532d",
    "miss": "#7f1d1d",
    "finished": "#4c1d95",
}

# night-road palette
GLOW = "#fbbf24"
GLOW_SOFT = "#fde68a"
LANE = "#1f2937"
BLOCKED = "#450a0a"
SAFE = "#166534"
MARKER = "#f8fafc"
HUD_BG = "#111827"
DARK = "#0a0a0a"

FONT_PATH = "/System/Library/Fonts/Helvetica.ttc"


def _font(size: int) -> ImageFont.FreeTypeFont:
    try:
        return ImageFont.truetype(FONT_PATH, size)
    except OSError:
        return ImageFont.load_default()


def phase_color(phase: str) -> str:
    """Map a controller phase (or "hit"/"miss") to a background color."""
    return PHASE_COLORS.get(phase, "#6b7280")


@dataclass(frozen=True)
class KeyFace:
    """What one key shows: up to four text lines on a flat background."""

    lines: tuple[str, ...] = ()
    bg: str = DARK
    fg: str = "#ffffff"


def render_text_button(
    size: tuple[int, int] = SIZE,
    lines: list[str] | tuple[str, ...] | None = None,
    bg_color: str = DARK,
    font_sizes: list[int] | None = None,
    colors: list[str] | None = None,
) -> Image.Image:
    """Render a text-only key — lines centered vertically, first line largest."""
    img = Image.new("RGB", size, bg_color)
    if not lines:
        return img

    draw = ImageDraw.Draw(img)
    n = len(lines)
    if not font_sizes:
        font_sizes = {1: [22], 2: [18, 14], 3: [16, 13, 11]}.get(n, [14, 12, 10, 9])
    if not colors:
        colors = ["#ffffff", "#dddddd", "#aaaaaa", "#888888"][:n]
    font_sizes = list(font_sizes) + [font_sizes[-1]] * (n - len(font_sizes))
    colors = list(colors) + [colors[-1]] * (n - len(colors))

    fonts = [_font(s) for s in font_sizes]
    heights = [f.getbbox("Ag")[3] - f.getbbox("Ag")[1] for f in fonts]
    spacing = 4
    y = (size[1] - (sum(heights) + spacing * (n - 1))) // 2
    for i, text in enumerate(lines):
        draw.text((size[0] // 2, y), text, font=fonts[i], fill=colors[i], anchor="mt")
        y += heights[i] + spacing
    return img


def render_face(face: KeyFace, size: tuple[int, int] = SIZE) -> Image.Image:
    colors = [face.fg] + ["#d1d5db"] * 3
    return render_text_button(size=size, lines=face.lines, bg_color=face.bg, colors=colors)
