"""
Template rendering: binds request parameters into a named template and
produces a render tree.

Templates are looked up in a registry keyed by template id. Each entry is a
variant implementing `build(params) -> RenderTree`:

- MarkupTemplate: SVG-like markup with {{ placeholders }} (see template_language)
- LayeredTemplate: composed entirely from a `layers` parameter
"""
import math
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.errors import BindingFailed, OGImageError, TemplateNotFound, TemplateParseFailed
from ..core.models import DEFAULT_HEIGHT, DEFAULT_WIDTH
from ..core.render_tree import (
    Box, Ellipse, Gradient, ImageRef, Line, Outline, RenderTree, Shadow, TextRun,
)
from ..utils.debug import print_step
from ..utils.security import validate_asset_url
from . import template_language

BUILTIN_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
TEMPLATE_SUFFIX = ".svg"

_TEMPLATE_ID_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")

# Average glyph advance as a fraction of font size, used for word wrapping
GLYPH_WIDTH_RATIO = 0.55

_ANCHORS = {"left": "start", "center": "middle", "right": "end",
            "start": "start", "middle": "middle", "end": "end"}


# ---------------------------------------------------------------------------
# Template sources
# ---------------------------------------------------------------------------

class TemplateSource(ABC):
    """Where raw template text comes from."""

    @abstractmethod
    def load(self, template_id: str) -> str:
        """Return raw template text or raise TemplateNotFound."""

    def list_ids(self) -> List[str]:
        return []


class DirectoryTemplateSource(TemplateSource):
    """Loads `<template_id>.svg` files from a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def load(self, template_id: str) -> str:
        if not _TEMPLATE_ID_RE.match(template_id or ""):
            raise TemplateNotFound(template_id)
        path = self.directory / f"{template_id}{TEMPLATE_SUFFIX}"
        if not path.is_file():
            raise TemplateNotFound(template_id)
        return path.read_text(encoding="utf-8")

    def list_ids(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{TEMPLATE_SUFFIX}"))


class MappingTemplateSource(TemplateSource):
    """In-memory templates, e.g. supplied by an embedding application."""

    def __init__(self, templates: Mapping[str, str]):
        self._templates = dict(templates)

    def load(self, template_id: str) -> str:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateNotFound(template_id)

    def list_ids(self) -> List[str]:
        return sorted(self._templates)


class ChainTemplateSource(TemplateSource):
    """Tries each source in order; the first that has the template wins."""

    def __init__(self, *sources: TemplateSource):
        self.sources = list(sources)

    def load(self, template_id: str) -> str:
        for source in self.sources:
            try:
                return source.load(template_id)
            except TemplateNotFound:
                continue
        raise TemplateNotFound(template_id)

    def list_ids(self) -> List[str]:
        ids = set()
        for source in self.sources:
            ids.update(source.list_ids())
        return sorted(ids)


def builtin_source() -> DirectoryTemplateSource:
    return DirectoryTemplateSource(BUILTIN_TEMPLATES_DIR)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _parse_number(value: Any, reference: Optional[float]) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.endswith("%") and reference is not None:
        return float(text[:-1]) * reference / 100.0
    if text.endswith("px"):
        text = text[:-2]
    return float(text)


def _number(value: Any, name: str, reference: Optional[float] = None) -> float:
    if isinstance(value, bool):
        raise BindingFailed(f"'{name}' must be a number, got {value!r}")
    try:
        number = _parse_number(value, reference)
    except (ValueError, OverflowError):
        raise BindingFailed(f"'{name}' must be a number, got {value!r}")
    if not math.isfinite(number):
        raise BindingFailed(f"'{name}' must be finite, got {value!r}")
    return number


def _attr_number(elem: ET.Element, name: str, default: float = 0.0,
                 reference: Optional[float] = None) -> float:
    value = elem.get(name)
    if value is None or value == "":
        return default
    return _number(value, f"{_local(elem.tag)}@{name}", reference)


def _dimension(value: Any, name: str) -> int:
    number = _number(value, name)
    if not number.is_integer():
        raise BindingFailed(f"'{name}' must be a whole number of pixels, got {value!r}")
    return int(number)


def _max_lines(value: Any, name: str) -> int:
    number = _number(value, name)
    if number < 1:
        raise BindingFailed(f"'{name}' must be at least 1, got {value!r}")
    return int(number)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _paint(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value or value == "none":
        return None
    return value


def wrap_text(text: str, font_size: float, max_width: Optional[float],
              max_lines: Optional[int] = None) -> List[str]:
    """Greedy word wrap using an estimated glyph width."""
    words = text.split()
    if not words:
        return []
    if not max_width:
        return [" ".join(words)]

    char_width = font_size * GLYPH_WIDTH_RATIO
    lines: List[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if current and len(candidate) * char_width > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)

    if max_lines and len(lines) > max_lines:
        lines = lines[:max_lines]
        lines[-1] = lines[-1].rstrip(".") + "..."
    return lines


# ---------------------------------------------------------------------------
# Layers (shared by both template variants)
# ---------------------------------------------------------------------------

def _required(layer: Mapping[str, Any], name: str, index: int) -> Any:
    if name not in layer or layer[name] is None:
        raise BindingFailed(f"Layer {index} is missing required field '{name}'")
    return layer[name]


def _gradient_from_spec(spec: Optional[Mapping[str, Any]]) -> Optional[Gradient]:
    if not spec:
        return None
    colors = tuple(str(c) for c in spec.get("colors", ()))
    if len(colors) < 2:
        raise BindingFailed("Gradient needs at least two colors")
    kind = str(spec.get("gradient_type", spec.get("type", "linear"))).lower()
    if kind not in ("linear", "radial"):
        raise BindingFailed(f"Unknown gradient type '{kind}'")
    return Gradient(
        colors=colors,
        kind=kind,
        start=(_number(spec.get("start_x", 0), "start_x"), _number(spec.get("start_y", 0), "start_y")),
        end=(_number(spec.get("end_x", 1), "end_x"), _number(spec.get("end_y", 0), "end_y")),
    )


def _shadow_from_spec(spec: Optional[Mapping[str, Any]]) -> Optional[Shadow]:
    if not spec:
        return None
    return Shadow(
        color=str(spec.get("color", "#00000080")),
        offset_x=_number(spec.get("offset_x", 2), "offset_x"),
        offset_y=_number(spec.get("offset_y", 2), "offset_y"),
        blur=_number(spec.get("blur", 0), "blur"),
    )


def _outline_from_spec(spec: Optional[Mapping[str, Any]]) -> Optional[Outline]:
    if not spec:
        return None
    return Outline(color=str(spec.get("color", "#000000")), width=_number(spec.get("width", 1), "width"))


def build_layer_nodes(layers: Iterable[Mapping[str, Any]], width: int, height: int) -> list:
    """Turn overlay layer specs (text/image/shape) into render nodes."""
    if isinstance(layers, (str, bytes)) or not isinstance(layers, Iterable):
        raise BindingFailed("'layers' must be a list of layer objects")

    nodes = []
    for index, layer in enumerate(layers):
        if not isinstance(layer, Mapping):
            raise BindingFailed(f"Layer {index} must be an object")
        kind = str(layer.get("type", "")).lower()
        z_index = int(_number(layer.get("z_index", 0), "z_index"))

        if kind == "text":
            font_size = _number(layer.get("font_size", 48), "font_size")
            max_width = layer.get("max_width")
            max_lines = layer.get("max_lines")
            lines = wrap_text(
                str(_required(layer, "content", index)),
                font_size,
                _number(max_width, "max_width") if max_width is not None else None,
                _max_lines(max_lines, "max_lines") if max_lines is not None else None,
            )
            if not lines:
                continue
            anchor = _ANCHORS.get(str(layer.get("text_align", "left")).lower())
            if anchor is None:
                raise BindingFailed(f"Layer {index} has unknown text_align '{layer.get('text_align')}'")
            nodes.append(TextRun(
                lines=tuple(lines),
                x=_number(layer.get("x", 0), "x"),
                y=_number(layer.get("y", font_size), "y"),
                font_size=font_size,
                line_height=_number(layer.get("line_height", 0), "line_height"),
                fill=str(layer.get("color", "#000000")),
                font_family=str(layer.get("font_family", "sans-serif")),
                font_weight=str(layer.get("font_weight", "normal")),
                anchor=anchor,
                gradient=_gradient_from_spec(layer.get("gradient")),
                shadow=_shadow_from_spec(layer.get("shadow")),
                outline=_outline_from_spec(layer.get("outline")),
                z_index=z_index,
            ))
        elif kind == "image":
            nodes.append(ImageRef(
                href=validate_asset_url(str(_required(layer, "src", index))),
                x=_number(layer.get("x", 0), "x"),
                y=_number(layer.get("y", 0), "y"),
                width=_number(_required(layer, "width", index), "width"),
                height=_number(_required(layer, "height", index), "height"),
                opacity=_number(layer.get("opacity", 1.0), "opacity"),
                z_index=z_index,
            ))
        elif kind == "shape":
            shape = str(layer.get("shape_type", "rectangle")).lower()
            x = _number(layer.get("x", 0), "x")
            y = _number(layer.get("y", 0), "y")
            w = _number(layer.get("width", width), "width")
            h = _number(layer.get("height", height), "height")
            fill = layer.get("fill_color")
            stroke = layer.get("stroke_color")
            stroke_width = _number(layer.get("stroke_width", 1 if stroke else 0), "stroke_width")
            if shape == "rectangle":
                nodes.append(Box(x, y, w, h, fill=fill, stroke=stroke,
                                 stroke_width=stroke_width, z_index=z_index))
            elif shape == "circle":
                nodes.append(Ellipse(x + w / 2, y + h / 2, w / 2, h / 2, fill=fill, stroke=stroke,
                                     stroke_width=stroke_width, z_index=z_index))
            elif shape == "line":
                nodes.append(Line(
                    x, y,
                    _number(_required(layer, "x2", index), "x2"),
                    _number(_required(layer, "y2", index), "y2"),
                    stroke=stroke or "#000000",
                    stroke_width=stroke_width or 1.0,
                    z_index=z_index,
                ))
            else:
                raise BindingFailed(f"Layer {index} has unknown shape_type '{shape}'")
        else:
            raise BindingFailed(f"Layer {index} has unknown type '{kind}'")
    return nodes


# ---------------------------------------------------------------------------
# Template variants
# ---------------------------------------------------------------------------

class Template(ABC):
    template_id: str

    @abstractmethod
    def build(self, params: Mapping[str, Any]) -> RenderTree:
        """Bind params and produce a render tree."""


class MarkupTemplate(Template):
    """SVG-like markup template; supports rect, circle, ellipse, line, text, image, g, defs."""

    def __init__(self, template_id: str, source: str):
        self.template_id = template_id
        self.source = source
        self.nodes = template_language.compile_template(source)

    def build(self, params: Mapping[str, Any]) -> RenderTree:
        markup = template_language.bind(self.nodes, params)
        try:
            root = ET.fromstring(markup)
        except ET.ParseError as e:
            raise TemplateParseFailed(f"Template '{self.template_id}' produced invalid markup: {e}")

        if _local(root.tag) != "svg":
            raise TemplateParseFailed(f"Template '{self.template_id}' root element must be <svg>")

        width = _dimension(root.get("width", DEFAULT_WIDTH), "width")
        height = _dimension(root.get("height", DEFAULT_HEIGHT), "height")
        builder = _TreeBuilder(width, height)
        builder.collect_defs(root)
        builder.walk(root)

        if params.get("layers"):
            builder.nodes.extend(build_layer_nodes(params["layers"], width, height))

        return RenderTree(
            width=width,
            height=height,
            background=_paint(root.get("data-background")),
            nodes=tuple(builder.nodes),
        )


class _TreeBuilder:
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.gradients: Dict[str, Gradient] = {}
        self.nodes: list = []

    def collect_defs(self, root: ET.Element) -> None:
        for elem in root.iter():
            tag = _local(elem.tag)
            if tag not in ("linearGradient", "radialGradient") or not elem.get("id"):
                continue
            colors = tuple(
                stop.get("stop-color", "#000000")
                for stop in elem if _local(stop.tag) == "stop"
            )
            if len(colors) < 2:
                raise BindingFailed(f"Gradient '{elem.get('id')}' needs at least two stops")
            self.gradients[elem.get("id")] = Gradient(
                colors=colors,
                kind="radial" if tag == "radialGradient" else "linear",
                start=(_attr_number(elem, "x1", 0.0, 1.0), _attr_number(elem, "y1", 0.0, 1.0)),
                end=(_attr_number(elem, "x2", 1.0, 1.0), _attr_number(elem, "y2", 0.0, 1.0)),
            )

    def _fill(self, elem: ET.Element):
        """Returns (solid fill, gradient) for an element's fill attribute."""
        fill = _paint(elem.get("fill"))
        if fill and fill.startswith("url(#"):
            gradient = self.gradients.get(fill[5:-1])
            if gradient is None:
                raise BindingFailed(f"Unknown gradient reference '{fill}'")
            return None, gradient
        return fill, None

    def walk(self, parent: ET.Element) -> None:
        for elem in parent:
            tag = _local(elem.tag)
            z_index = int(_attr_number(elem, "data-z", 0))
            if tag == "g":
                self.walk(elem)
            elif tag == "rect":
                fill, gradient = self._fill(elem)
                self.nodes.append(Box(
                    x=_attr_number(elem, "x", 0, self.width),
                    y=_attr_number(elem, "y", 0, self.height),
                    width=_attr_number(elem, "width", self.width, self.width),
                    height=_attr_number(elem, "height", self.height, self.height),
                    fill=fill,
                    stroke=_paint(elem.get("stroke")),
                    stroke_width=_attr_number(elem, "stroke-width", 0),
                    radius=_attr_number(elem, "rx", 0),
                    opacity=_attr_number(elem, "opacity", 1.0),
                    gradient=gradient,
                    z_index=z_index,
                ))
            elif tag in ("circle", "ellipse"):
                fill, _ = self._fill(elem)
                radius = _attr_number(elem, "r", 0)
                self.nodes.append(Ellipse(
                    cx=_attr_number(elem, "cx", 0, self.width),
                    cy=_attr_number(elem, "cy", 0, self.height),
                    rx=_attr_number(elem, "rx", radius),
                    ry=_attr_number(elem, "ry", radius),
                    fill=fill,
                    stroke=_paint(elem.get("stroke")),
                    stroke_width=_attr_number(elem, "stroke-width", 0),
                    opacity=_attr_number(elem, "opacity", 1.0),
                    z_index=z_index,
                ))
            elif tag == "line":
                self.nodes.append(Line(
                    x1=_attr_number(elem, "x1", 0, self.width),
                    y1=_attr_number(elem, "y1", 0, self.height),
                    x2=_attr_number(elem, "x2", 0, self.width),
                    y2=_attr_number(elem, "y2", 0, self.height),
                    stroke=_paint(elem.get("stroke")) or "#000000",
                    stroke_width=_attr_number(elem, "stroke-width", 1),
                    z_index=z_index,
                ))
            elif tag == "text":
                self._text(elem, z_index)
            elif tag == "image":
                href = elem.get("href") or elem.get("{http://www.w3.org/1999/xlink}href")
                if not href:
                    continue
                self.nodes.append(ImageRef(
                    href=validate_asset_url(href),
                    x=_attr_number(elem, "x", 0, self.width),
                    y=_attr_number(elem, "y", 0, self.height),
                    width=_attr_number(elem, "width", 0, self.width),
                    height=_attr_number(elem, "height", 0, self.height),
                    opacity=_attr_number(elem, "opacity", 1.0),
                    z_index=z_index,
                ))
            # defs, title, desc, style and unknown elements carry no paint

    def _text(self, elem: ET.Element, z_index: int) -> None:
        content = " ".join("".join(elem.itertext()).split())
        font_size = _attr_number(elem, "font-size", 48)
        max_width = elem.get("data-max-width")
        max_lines = elem.get("data-max-lines")
        lines = wrap_text(
            content,
            font_size,
            _number(max_width, "data-max-width", self.width) if max_width else None,
            _max_lines(max_lines, "data-max-lines") if max_lines else None,
        )
        if not lines:
            return

        fill, gradient = self._fill(elem)
        shadow = None
        if elem.get("data-shadow"):
            parts = elem.get("data-shadow").split()
            shadow = Shadow(
                color=parts[0],
                offset_x=_number(parts[1], "data-shadow") if len(parts) > 1 else 2.0,
                offset_y=_number(parts[2], "data-shadow") if len(parts) > 2 else 2.0,
                blur=_number(parts[3], "data-shadow") if len(parts) > 3 else 0.0,
            )
        outline = None
        if elem.get("data-outline"):
            parts = elem.get("data-outline").split()
            outline = Outline(color=parts[0], width=_number(parts[1], "data-outline") if len(parts) > 1 else 1.0)

        anchor = elem.get("text-anchor", "start")
        if anchor not in ("start", "middle", "end"):
            raise BindingFailed(f"Unknown text-anchor '{anchor}'")

        self.nodes.append(TextRun(
            lines=tuple(lines),
            x=_attr_number(elem, "x", 0, self.width),
            y=_attr_number(elem, "y", font_size, self.height),
            font_size=font_size,
            line_height=_attr_number(elem, "data-line-height", 0),
            fill=fill or "#000000",
            font_family=elem.get("font-family", "sans-serif"),
            font_weight=elem.get("font-weight", "normal"),
            anchor=anchor,
            gradient=gradient,
            shadow=shadow,
            outline=outline,
            z_index=z_index,
        ))


class LayeredTemplate(Template):
    """
    Canvas composed from request params only:
    width, height, background_color and a `layers` list.
    A `title` without layers is drawn as a centered heading.
    """

    def __init__(self, template_id: str = "layered"):
        self.template_id = template_id

    def build(self, params: Mapping[str, Any]) -> RenderTree:
        width = _dimension(params.get("width", DEFAULT_WIDTH), "width")
        height = _dimension(params.get("height", DEFAULT_HEIGHT), "height")
        layers = params.get("layers") or ()
        nodes = build_layer_nodes(layers, width, height)

        if not nodes and params.get("title"):
            font_size = _number(params.get("title_font_size", 64), "title_font_size")
            nodes.append(TextRun(
                lines=tuple(wrap_text(str(params["title"]), font_size, width * 0.8, 3)),
                x=width / 2,
                y=height / 2,
                font_size=font_size,
                fill=str(params.get("text_color", "#111827")),
                font_family=str(params.get("font_family", "sans-serif")),
                font_weight="bold",
                anchor="middle",
            ))

        if not nodes:
            raise BindingFailed("Layered template needs 'layers' or a 'title'")

        return RenderTree(
            width=width,
            height=height,
            background=str(params.get("background_color", "#ffffff")),
            nodes=tuple(nodes),
        )


# ---------------------------------------------------------------------------
# Registry and renderer
# ---------------------------------------------------------------------------

class TemplateRegistry:
    """
    Maps template ids to template variants. Markup templates are loaded from
    the source on first use and kept compiled.
    """

    def __init__(self, source: Optional[TemplateSource] = None):
        self.source = source or builtin_source()
        self._templates: Dict[str, Template] = {}
        self._registered: Dict[str, Template] = {"layered": LayeredTemplate()}

    def register(self, template: Template) -> None:
        self._registered[template.template_id] = template

    def get(self, template_id: str) -> Template:
        if template_id in self._registered:
            return self._registered[template_id]
        template = self._templates.get(template_id)
        if template is None:
            template = MarkupTemplate(template_id, self.source.load(template_id))
            self._templates[template_id] = template
        return template

    def template_ids(self) -> List[str]:
        return sorted(set(self._registered) | set(self.source.list_ids()))


class TemplateRenderer:
    """Produces render trees from (template id, params)."""

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()

    def render(self, template_id: str, params: Mapping[str, Any]) -> RenderTree:
        print_step("Template Render", {
            "template": template_id,
            "param_keys": sorted(params.keys()),
        }, "input")

        try:
            tree = self.registry.get(template_id).build(params)
        except OGImageError as e:
            print_step("Template Render Error", str(e), "error")
            raise

        print_step("Template Rendered", {
            "template": template_id,
            "size": f"{tree.width}x{tree.height}",
            "nodes": len(tree.nodes),
        }, "output")
        return tree
