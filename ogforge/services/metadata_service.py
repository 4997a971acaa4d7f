"""
Page metadata (Open Graph / Twitter card tags) for a page path.
Cached separately from images, keyed by path + query + user-agent class.
"""
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from ..core.models import DEFAULT_HEIGHT, DEFAULT_WIDTH
from ..utils.debug import print_step
from .artifact_cache import ArtifactCache
from .key_deriver import derive_metadata_key, user_agent_class
from .template_language import escape_markup


class MetadataService:
    def __init__(self, cache: ArtifactCache, base_url: str, ttl: Optional[float] = None):
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl

    def image_url(self, template: str, params: Mapping[str, Any]) -> str:
        query = urlencode(sorted((k, v) for k, v in params.items() if v not in (None, "")))
        return f"{self.base_url}/og/image/{template}?{query}"

    def page_metadata(
        self,
        path: str,
        title: str,
        description: Optional[str] = None,
        template: str = "simple",
        site_name: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Build the meta tags for a page.

        Args:
            path: Page path, e.g. "/blog/hello"
            title: Page title
            description: Optional page description
            template: OG image template used for og:image
            site_name: Optional og:site_name
            user_agent: Requesting client's User-Agent header

        Returns:
            Mapping of meta tag name/property to content
        """
        if not path.startswith("/"):
            path = f"/{path}"
        query = {"title": title, "description": description, "template": template, "site_name": site_name}
        key = derive_metadata_key(path, query, user_agent)

        cached = self.cache.lookup(key)
        if cached is not None:
            print_step("Metadata Cache Hit", {"path": path, "key": key}, "output")
            return dict(cached)

        image_params = {"title": title, "description": description}
        if template == "article":
            image_params["site_name"] = site_name

        tags = {
            "title": title,
            "og:type": "website",
            "og:title": title,
            "og:url": f"{self.base_url}{path}",
            "og:image": self.image_url(template, image_params),
            "og:image:width": str(DEFAULT_WIDTH),
            "og:image:height": str(DEFAULT_HEIGHT),
            "twitter:card": "summary_large_image",
            "twitter:title": title,
        }
        if description:
            tags["description"] = description
            tags["og:description"] = description
            tags["twitter:description"] = description
        if site_name:
            tags["og:site_name"] = site_name
        if user_agent_class(user_agent) == "bot":
            tags["og:image:alt"] = title

        self.cache.insert(key, dict(tags), self.ttl)
        print_step("Metadata Generated", {"path": path, "key": key, "tags": len(tags)}, "output")
        return tags


def render_meta_tags(tags: Mapping[str, str]) -> str:
    """Render tags as <meta> elements (og:* use property=, others name=)."""
    lines = []
    for name, content in tags.items():
        if name == "title":
            lines.append(f"<title>{escape_markup(content)}</title>")
            continue
        attr = "property" if name.startswith("og:") else "name"
        lines.append(f'<meta {attr}="{escape_markup(name)}" content="{escape_markup(content)}">')
    return "\n".join(lines)
