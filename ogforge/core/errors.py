"""
Failure taxonomy for OG image generation.

Bad-input errors (transient = False) mean the same request will keep failing;
transient errors may succeed when retried by the caller.
"""


class OGImageError(Exception):
    """Base class for every rendering failure surfaced to callers."""

    transient = False

    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.message = message
        self.key = key


class TemplateNotFound(OGImageError):
    """No template is registered or stored under the requested id."""

    def __init__(self, template_id: str):
        super().__init__(f"Template '{template_id}' not found")
        self.template_id = template_id


class TemplateParseFailed(OGImageError):
    """The template text (or its bound markup) is malformed."""


class BindingFailed(OGImageError):
    """A parameter is missing or cannot be bound into the template."""


class EncodingFailed(OGImageError):
    """The render tree could not be turned into output bytes."""


class GeometryOutOfBounds(EncodingFailed):
    """Requested canvas dimensions are outside the supported range."""

    def __init__(self, width, height, max_dimension: int, subject: str = "Image"):
        super().__init__(
            f"{subject} dimensions {width}x{height} are out of bounds "
            f"(each axis must be between 1 and {max_dimension} px)"
        )
        self.width = width
        self.height = height


class CacheIOFailure(OGImageError):
    transient = True


class RenderCancelled(OGImageError):
    """The leader render was cancelled or timed out before publishing."""

    transient = True


class AssetFetchFailed(OGImageError):
    """A remote logo/background image could not be downloaded."""

    transient = True
