"""
Data model shared by the OG image engine.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 630


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    SVG = "svg"

    @property
    def content_type(self) -> str:
        if self is ImageFormat.SVG:
            return "image/svg+xml"
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value

    @classmethod
    def parse(cls, value) -> "ImageFormat":
        if isinstance(value, cls):
            return value
        normalized = str(value or "png").strip().lower()
        if normalized == "jpg":
            normalized = "jpeg"
        return cls(normalized)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class RenderRequest:
    """
    A single OG image render request.

    `params` holds everything bound into the template: title, description,
    width/height, colors, font settings, logo/background URLs and optional
    `layers` overlay specs. It is frozen on construction.
    """

    template: str
    params: Mapping[str, Any] = field(default_factory=dict)
    format: ImageFormat = ImageFormat.PNG

    def __post_init__(self):
        object.__setattr__(self, "params", _freeze(self.params))
        object.__setattr__(self, "format", ImageFormat.parse(self.format))

    @classmethod
    def simple(cls, title: str, description: Optional[str] = None,
               width: int = None, height: int = None,
               format: ImageFormat = ImageFormat.PNG) -> "RenderRequest":
        params = {"title": title}
        if description:
            params["description"] = description
        if width is not None:
            params["width"] = width
        if height is not None:
            params["height"] = height
        return cls(template="simple", params=params, format=format)


@dataclass(frozen=True)
class Artifact:
    """Final rendered output for a request."""

    data: bytes
    format: ImageFormat
    width: int
    height: int

    @property
    def content_type(self) -> str:
        return self.format.content_type

    @property
    def extension(self) -> str:
        return self.format.extension

    @property
    def byte_size(self) -> int:
        return len(self.data)
