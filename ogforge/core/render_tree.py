"""
Intermediate render tree produced by templates and consumed by encoders.
Trees are never cached; only the encoded bytes are.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class Gradient:
    colors: Tuple[str, ...]
    kind: str = "linear"  # "linear" | "radial"
    start: Tuple[float, float] = (0.0, 0.0)
    end: Tuple[float, float] = (1.0, 0.0)


@dataclass(frozen=True)
class Shadow:
    color: str = "#00000080"
    offset_x: float = 2.0
    offset_y: float = 2.0
    blur: float = 0.0


@dataclass(frozen=True)
class Outline:
    color: str = "#000000"
    width: float = 1.0


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float
    fill: Optional[str] = None
    stroke: Optional[str] = None
    stroke_width: float = 0.0
    radius: float = 0.0
    opacity: float = 1.0
    gradient: Optional[Gradient] = None
    z_index: int = 0


@dataclass(frozen=True)
class Ellipse:
    cx: float
    cy: float
    rx: float
    ry: float
    fill: Optional[str] = None
    stroke: Optional[str] = None
    stroke_width: float = 0.0
    opacity: float = 1.0
    z_index: int = 0


@dataclass(frozen=True)
class Line:
    x1: float
    y1: float
    x2: float
    y2: float
    stroke: str = "#000000"
    stroke_width: float = 1.0
    z_index: int = 0


@dataclass(frozen=True)
class TextRun:
    """A block of text already broken into lines; `y` is the first baseline."""

    lines: Tuple[str, ...]
    x: float
    y: float
    font_size: float = 48.0
    line_height: float = 0.0
    fill: str = "#000000"
    font_family: str = "sans-serif"
    font_weight: str = "normal"
    anchor: str = "start"  # "start" | "middle" | "end"
    gradient: Optional[Gradient] = None
    shadow: Optional[Shadow] = None
    outline: Optional[Outline] = None
    z_index: int = 0

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def effective_line_height(self) -> float:
        return self.line_height or self.font_size * 1.2


@dataclass(frozen=True)
class ImageRef:
    href: str
    x: float
    y: float
    width: float
    height: float
    opacity: float = 1.0
    z_index: int = 0


Node = Union[Box, Ellipse, Line, TextRun, ImageRef]


@dataclass(frozen=True)
class RenderTree:
    width: int
    height: int
    background: Optional[str] = "#ffffff"
    nodes: Tuple[Node, ...] = field(default_factory=tuple)

    def ordered_nodes(self) -> List[Node]:
        """Nodes in paint order: z-index ascending, document order for ties."""
        return sorted(self.nodes, key=lambda node: node.z_index)
