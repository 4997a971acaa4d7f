"""
Artifact encoders: turn a render tree into output bytes.

- PillowEncoder: rasterizes with Pillow (PNG, JPEG, WebP)
- SvgEncoder: serializes the tree as standalone SVG markup
- PlaywrightEncoder: screenshots the SVG in headless Chromium (PNG, JPEG)

Every encoder validates geometry before allocating any buffer.
"""
import base64
import binascii
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Iterable, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError, sync_playwright
from PIL import Image, ImageColor, ImageDraw, ImageFilter, ImageFont, ImageOps, UnidentifiedImageError, features

from ..core.errors import EncodingFailed, GeometryOutOfBounds, OGImageError
from ..core.models import ImageFormat
from ..core.render_tree import Box, Ellipse, Gradient, ImageRef, Line, RenderTree, TextRun
from ..utils.debug import print_step
from .template_language import escape_markup

MIN_DIMENSION = 1
MAX_DIMENSION = 4096

AssetLoader = Callable[[str], bytes]

_FONT_CANDIDATES = {
    False: ("DejaVuSans.ttf", "LiberationSans-Regular.ttf", "Arial.ttf", "arial.ttf"),
    True: ("DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf"),
}

_PIL_ANCHORS = {"start": "ls", "middle": "ms", "end": "rs"}

CHROMIUM_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--no-first-run',
    '--no-zygote',
    '--disable-gpu'
]


@dataclass(frozen=True)
class EncodeOptions:
    format: ImageFormat = ImageFormat.PNG
    quality: int = 90


def _node_extents(node) -> Tuple[float, float]:
    """Largest pixel extents a node can ask the rasterizer to allocate."""
    if isinstance(node, (Box, ImageRef)):
        return node.width, node.height
    if isinstance(node, Ellipse):
        return 2 * node.rx, 2 * node.ry
    if isinstance(node, TextRun):
        extent = node.font_size
        if node.shadow:
            extent = max(extent, node.shadow.blur)
        if node.outline:
            extent = max(extent, node.outline.width)
        return extent, extent
    return 0.0, 0.0


def validate_geometry(tree: RenderTree) -> None:
    for value in (tree.width, tree.height):
        if not isinstance(value, int) or not MIN_DIMENSION <= value <= MAX_DIMENSION:
            raise GeometryOutOfBounds(tree.width, tree.height, MAX_DIMENSION)
    for node in tree.nodes:
        width, height = _node_extents(node)
        stroke = getattr(node, "stroke_width", 0.0)
        if max(width, height, stroke) > MAX_DIMENSION:
            raise GeometryOutOfBounds(_fmt(width), _fmt(height), MAX_DIMENSION, type(node).__name__)


class ArtifactEncoder(ABC):
    formats: Tuple[ImageFormat, ...] = ()

    @abstractmethod
    def encode(self, tree: RenderTree, options: EncodeOptions) -> bytes:
        """Encode the tree. Raises EncodingFailed."""

    def supports(self, fmt: ImageFormat) -> bool:
        return fmt in self.formats


# ---------------------------------------------------------------------------
# SVG
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    return f"{value:g}"


class SvgEncoder(ArtifactEncoder):
    """Serializes a render tree to a standalone SVG document."""

    formats = (ImageFormat.SVG,)

    def encode(self, tree: RenderTree, options: EncodeOptions = EncodeOptions(ImageFormat.SVG)) -> bytes:
        validate_geometry(tree)
        return self.to_markup(tree).encode("utf-8")

    def to_markup(self, tree: RenderTree) -> str:
        defs: List[str] = []
        body: List[str] = []

        if tree.background:
            body.append(f'<rect x="0" y="0" width="{tree.width}" height="{tree.height}" '
                        f'fill="{escape_markup(tree.background)}"/>')

        for index, node in enumerate(tree.ordered_nodes()):
            gradient_ref = None
            gradient = getattr(node, "gradient", None)
            if gradient is not None:
                gradient_ref = f"g{index}"
                defs.append(self._gradient(gradient_ref, gradient))
            body.append(self._node(node, gradient_ref))

        parts = [f'<svg xmlns="http://www.w3.org/2000/svg" width="{tree.width}" '
                 f'height="{tree.height}" viewBox="0 0 {tree.width} {tree.height}">']
        if defs:
            parts.append("<defs>" + "".join(defs) + "</defs>")
        parts.extend(body)
        parts.append("</svg>")
        return "".join(parts)

    def _gradient(self, ref: str, gradient: Gradient) -> str:
        stops = []
        last = max(len(gradient.colors) - 1, 1)
        for i, color in enumerate(gradient.colors):
            stops.append(f'<stop offset="{_fmt(i * 100 / last)}%" stop-color="{escape_markup(color)}"/>')
        if gradient.kind == "radial":
            return f'<radialGradient id="{ref}">{"".join(stops)}</radialGradient>'
        (x1, y1), (x2, y2) = gradient.start, gradient.end
        return (f'<linearGradient id="{ref}" x1="{_fmt(x1)}" y1="{_fmt(y1)}" '
                f'x2="{_fmt(x2)}" y2="{_fmt(y2)}">{"".join(stops)}</linearGradient>')

    def _paint(self, color: Optional[str], gradient_ref: Optional[str]) -> str:
        if gradient_ref:
            return f"url(#{gradient_ref})"
        return escape_markup(color) if color else "none"

    def _node(self, node, gradient_ref: Optional[str]) -> str:
        if isinstance(node, Box):
            extra = f' rx="{_fmt(node.radius)}"' if node.radius else ""
            if node.stroke:
                extra += f' stroke="{escape_markup(node.stroke)}" stroke-width="{_fmt(node.stroke_width)}"'
            return (f'<rect x="{_fmt(node.x)}" y="{_fmt(node.y)}" width="{_fmt(node.width)}" '
                    f'height="{_fmt(node.height)}" fill="{self._paint(node.fill, gradient_ref)}" '
                    f'opacity="{_fmt(node.opacity)}"{extra}/>')
        if isinstance(node, Ellipse):
            extra = ""
            if node.stroke:
                extra = f' stroke="{escape_markup(node.stroke)}" stroke-width="{_fmt(node.stroke_width)}"'
            return (f'<ellipse cx="{_fmt(node.cx)}" cy="{_fmt(node.cy)}" rx="{_fmt(node.rx)}" '
                    f'ry="{_fmt(node.ry)}" fill="{self._paint(node.fill, None)}" '
                    f'opacity="{_fmt(node.opacity)}"{extra}/>')
        if isinstance(node, Line):
            return (f'<line x1="{_fmt(node.x1)}" y1="{_fmt(node.y1)}" x2="{_fmt(node.x2)}" '
                    f'y2="{_fmt(node.y2)}" stroke="{escape_markup(node.stroke)}" '
                    f'stroke-width="{_fmt(node.stroke_width)}"/>')
        if isinstance(node, ImageRef):
            return (f'<image href="{escape_markup(node.href)}" x="{_fmt(node.x)}" y="{_fmt(node.y)}" '
                    f'width="{_fmt(node.width)}" height="{_fmt(node.height)}" '
                    f'opacity="{_fmt(node.opacity)}"/>')
        return self._text(node, gradient_ref)

    def _text(self, node: TextRun, gradient_ref: Optional[str]) -> str:
        attrs = (f'font-size="{_fmt(node.font_size)}" font-family="{escape_markup(node.font_family)}" '
                 f'font-weight="{escape_markup(node.font_weight)}" text-anchor="{node.anchor}"')

        def block(x: float, y: float, fill: str, extra: str = "") -> str:
            spans = []
            for i, line in enumerate(node.lines):
                dy = "0" if i == 0 else _fmt(node.effective_line_height)
                spans.append(f'<tspan x="{_fmt(x)}" dy="{dy}">{escape_markup(line)}</tspan>')
            return f'<text x="{_fmt(x)}" y="{_fmt(y)}" {attrs} fill="{fill}"{extra}>{"".join(spans)}</text>'

        out = []
        if node.shadow:
            out.append(block(node.x + node.shadow.offset_x, node.y + node.shadow.offset_y,
                             escape_markup(node.shadow.color)))
        extra = ""
        if node.outline:
            extra = (f' stroke="{escape_markup(node.outline.color)}" '
                     f'stroke-width="{_fmt(node.outline.width)}" paint-order="stroke"')
        out.append(block(node.x, node.y, self._paint(node.fill, gradient_ref), extra))
        return "".join(out)


# ---------------------------------------------------------------------------
# Pillow
# ---------------------------------------------------------------------------

def _color(value: str) -> Tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(value)
    except (ValueError, AttributeError):
        raise EncodingFailed(f"Invalid color '{value}'")
    if len(rgb) == 3:
        return rgb + (255,)
    return rgb


def _with_opacity(color: Tuple[int, int, int, int], opacity: float) -> Tuple[int, int, int, int]:
    opacity = max(0.0, min(1.0, opacity))
    return color[:3] + (int(round(color[3] * opacity)),)


@lru_cache(maxsize=64)
def load_font(size: int, bold: bool = False):
    for name in _FONT_CANDIDATES[bold]:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _color_ramp(colors: Iterable[str]) -> List[Tuple[int, int, int, int]]:
    """256-step ramp through the given color stops."""
    stops = [_color(c) for c in colors]
    segments = len(stops) - 1
    ramp = []
    for i in range(256):
        t = i / 255 * segments
        index = min(int(t), segments - 1)
        local = t - index
        a, b = stops[index], stops[index + 1]
        ramp.append(tuple(int(round(a[c] + (b[c] - a[c]) * local)) for c in range(4)))
    return ramp


def gradient_image(gradient: Gradient, size: Tuple[int, int]) -> Image.Image:
    width, height = max(1, size[0]), max(1, size[1])
    if gradient.kind == "radial":
        mask = Image.radial_gradient("L").resize((width, height))
    else:
        dx = gradient.end[0] - gradient.start[0]
        dy = gradient.end[1] - gradient.start[1]
        if dx == 0 and dy == 0:
            dx = 1.0
        # linear_gradient runs top to bottom; a quarter turn makes it left to right
        horizontal = Image.linear_gradient("L").rotate(90, expand=True).resize((width, height))
        vertical = Image.linear_gradient("L").resize((width, height))
        if dx < 0:
            horizontal = ImageOps.invert(horizontal)
        if dy < 0:
            vertical = ImageOps.invert(vertical)
        mask = Image.blend(horizontal, vertical, abs(dy) / (abs(dx) + abs(dy)))

    ramp = _color_ramp(gradient.colors)
    channels = [mask.point([ramp[i][c] for i in range(256)]) for c in range(4)]
    return Image.merge("RGBA", channels)


class PillowEncoder(ArtifactEncoder):
    """Rasterizes render trees with Pillow."""

    formats = (ImageFormat.PNG, ImageFormat.JPEG, ImageFormat.WEBP, ImageFormat.SVG)

    def __init__(self, asset_loader: Optional[AssetLoader] = None):
        self.asset_loader = asset_loader
        self._svg = SvgEncoder()

    def encode(self, tree: RenderTree, options: EncodeOptions) -> bytes:
        validate_geometry(tree)
        if options.format is ImageFormat.SVG:
            return self._svg.encode(tree, options)

        try:
            image = self.rasterize(tree)
            return self._save(image, options)
        except OGImageError:
            raise
        except (OSError, ValueError) as e:
            raise EncodingFailed(f"{options.format.value.upper()} encoding error: {e}")

    def rasterize(self, tree: RenderTree) -> Image.Image:
        validate_geometry(tree)
        size = (tree.width, tree.height)
        background = _color(tree.background) if tree.background else (0, 0, 0, 0)
        canvas = Image.new("RGBA", size, background)

        for node in tree.ordered_nodes():
            layer = Image.new("RGBA", size, (0, 0, 0, 0))
            if isinstance(node, Box):
                self._draw_box(layer, node)
            elif isinstance(node, Ellipse):
                self._draw_ellipse(layer, node)
            elif isinstance(node, Line):
                ImageDraw.Draw(layer).line(
                    (node.x1, node.y1, node.x2, node.y2),
                    fill=_color(node.stroke),
                    width=max(1, int(round(node.stroke_width))),
                )
            elif isinstance(node, TextRun):
                self._draw_text(layer, node)
            elif isinstance(node, ImageRef):
                self._draw_image(layer, node)
            canvas.alpha_composite(layer)

        return canvas

    def _draw_box(self, layer: Image.Image, node: Box) -> None:
        bounds = (node.x, node.y, node.x + node.width, node.y + node.height)
        if node.width <= 0 or node.height <= 0:
            return
        draw = ImageDraw.Draw(layer)
        outline = _with_opacity(_color(node.stroke), node.opacity) if node.stroke else None
        stroke_width = int(round(node.stroke_width)) if node.stroke else 0

        if node.gradient is not None:
            box_size = (max(1, int(round(node.width))), max(1, int(round(node.height))))
            fill_image = gradient_image(node.gradient, box_size)
            mask = Image.new("L", box_size, 0)
            ImageDraw.Draw(mask).rounded_rectangle(
                (0, 0, box_size[0] - 1, box_size[1] - 1), radius=node.radius, fill=int(255 * node.opacity)
            )
            layer.paste(fill_image, (int(round(node.x)), int(round(node.y))), mask)
            if outline:
                draw.rounded_rectangle(bounds, radius=node.radius, outline=outline, width=stroke_width)
            return

        fill = _with_opacity(_color(node.fill), node.opacity) if node.fill else None
        draw.rounded_rectangle(bounds, radius=node.radius, fill=fill, outline=outline, width=stroke_width)

    def _draw_ellipse(self, layer: Image.Image, node: Ellipse) -> None:
        if node.rx <= 0 or node.ry <= 0:
            return
        fill = _with_opacity(_color(node.fill), node.opacity) if node.fill else None
        outline = _with_opacity(_color(node.stroke), node.opacity) if node.stroke else None
        ImageDraw.Draw(layer).ellipse(
            (node.cx - node.rx, node.cy - node.ry, node.cx + node.rx, node.cy + node.ry),
            fill=fill,
            outline=outline,
            width=int(round(node.stroke_width)) if node.stroke else 0,
        )

    def _text_lines(self, node: TextRun, dx: float = 0.0, dy: float = 0.0):
        step = node.effective_line_height
        for i, line in enumerate(node.lines):
            yield line, (node.x + dx, node.y + dy + i * step)

    def _draw_text(self, layer: Image.Image, node: TextRun) -> None:
        font = load_font(max(1, int(round(node.font_size))), node.font_weight in ("bold", "700", "800", "900"))
        anchor = _PIL_ANCHORS[node.anchor]

        if node.shadow:
            shadow_layer = Image.new("RGBA", layer.size, (0, 0, 0, 0))
            draw = ImageDraw.Draw(shadow_layer)
            for line, xy in self._text_lines(node, node.shadow.offset_x, node.shadow.offset_y):
                draw.text(xy, line, font=font, fill=_color(node.shadow.color), anchor=anchor)
            if node.shadow.blur > 0:
                shadow_layer = shadow_layer.filter(ImageFilter.GaussianBlur(node.shadow.blur))
            layer.alpha_composite(shadow_layer)

        stroke_width = int(round(node.outline.width)) if node.outline else 0
        stroke_fill = _color(node.outline.color) if node.outline else None

        if node.gradient is None:
            draw = ImageDraw.Draw(layer)
            for line, xy in self._text_lines(node):
                draw.text(xy, line, font=font, fill=_color(node.fill), anchor=anchor,
                          stroke_width=stroke_width, stroke_fill=stroke_fill)
            return

        if stroke_width:
            draw = ImageDraw.Draw(layer)
            for line, xy in self._text_lines(node):
                draw.text(xy, line, font=font, fill=stroke_fill, anchor=anchor,
                          stroke_width=stroke_width, stroke_fill=stroke_fill)

        mask = Image.new("L", layer.size, 0)
        mask_draw = ImageDraw.Draw(mask)
        for line, xy in self._text_lines(node):
            mask_draw.text(xy, line, font=font, fill=255, anchor=anchor)
        bbox = mask.getbbox()
        if bbox is None:
            return
        fill_image = gradient_image(node.gradient, (bbox[2] - bbox[0], bbox[3] - bbox[1]))
        layer.paste(fill_image, bbox[:2], mask.crop(bbox))

    def _load_asset(self, href: str) -> bytes:
        if href.startswith("data:"):
            header, _, payload = href.partition(",")
            if not header.endswith(";base64"):
                raise EncodingFailed("Inline images must be base64 encoded")
            try:
                return base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError) as e:
                raise EncodingFailed(f"Invalid inline image data: {e}")
        if self.asset_loader is None:
            return b""
        return self.asset_loader(href)

    def _draw_image(self, layer: Image.Image, node: ImageRef) -> None:
        size = (int(round(node.width)), int(round(node.height)))
        if size[0] <= 0 or size[1] <= 0:
            return
        position = (int(round(node.x)), int(round(node.y)))

        data = self._load_asset(node.href)
        if not data:
            # Remote asset without a loader: reserve the slot with a frame
            ImageDraw.Draw(layer).rectangle(
                (position[0], position[1], position[0] + size[0] - 1, position[1] + size[1] - 1),
                outline=_with_opacity((148, 163, 184, 255), node.opacity),
                width=2,
            )
            return

        try:
            with Image.open(io.BytesIO(data)) as source:
                picture = source.convert("RGBA").resize(size)
        except (UnidentifiedImageError, OSError) as e:
            raise EncodingFailed(f"Could not decode image '{node.href[:64]}': {e}")

        if node.opacity < 1.0:
            alpha = picture.getchannel("A").point(lambda a: int(a * max(0.0, node.opacity)))
            picture.putalpha(alpha)
        layer.alpha_composite(picture, dest=position)

    def _save(self, image: Image.Image, options: EncodeOptions) -> bytes:
        buffer = io.BytesIO()
        if options.format is ImageFormat.PNG:
            image.save(buffer, format="PNG", optimize=True)
        elif options.format is ImageFormat.JPEG:
            flattened = Image.new("RGB", image.size, (255, 255, 255))
            flattened.paste(image, mask=image.getchannel("A"))
            flattened.save(buffer, format="JPEG", quality=options.quality)
        elif options.format is ImageFormat.WEBP:
            if not features.check("webp"):
                raise EncodingFailed("WebP encoding is not supported by the installed Pillow build")
            image.save(buffer, format="WEBP", quality=options.quality)
        else:
            raise EncodingFailed(f"Unsupported format: {options.format.value}")
        return buffer.getvalue()


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------

class PlaywrightEncoder(ArtifactEncoder):
    """
    Screenshots the tree's SVG markup in headless Chromium.
    Runs the sync Playwright API, so it must be called from a worker thread.
    """

    formats = (ImageFormat.PNG, ImageFormat.JPEG, ImageFormat.SVG)

    def __init__(self, settle_ms: int = 100):
        self.settle_ms = settle_ms
        self._svg = SvgEncoder()

    def encode(self, tree: RenderTree, options: EncodeOptions) -> bytes:
        validate_geometry(tree)
        if options.format is ImageFormat.SVG:
            return self._svg.encode(tree, options)
        if options.format not in (ImageFormat.PNG, ImageFormat.JPEG):
            raise EncodingFailed(f"Browser encoder cannot produce {options.format.value}")

        html = (
            '<!DOCTYPE html><html><head><style>html,body{margin:0;padding:0;}</style></head>'
            f'<body>{self._svg.to_markup(tree)}</body></html>'
        )
        screenshot_args = {"type": options.format.value, "full_page": False}
        if options.format is ImageFormat.JPEG:
            screenshot_args["quality"] = options.quality

        print_step("Browser Encode", {"size": f"{tree.width}x{tree.height}", "format": options.format.value}, "input")
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True, args=CHROMIUM_ARGS)
                try:
                    page = browser.new_page()
                    # Viewport is the exact OG image size
                    page.set_viewport_size({"width": tree.width, "height": tree.height})
                    page.set_content(html)
                    page.wait_for_timeout(self.settle_ms)
                    return page.screenshot(**screenshot_args)
                finally:
                    browser.close()
        except PlaywrightError as e:
            raise EncodingFailed(f"Browser screenshot failed: {e}")
