"""
Open Graph (OG) Image Generation Routes.
Generates dynamic social media preview images and page metadata.
"""
import dataclasses
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import Response

from ..core.errors import OGImageError, TemplateNotFound
from ..core.models import ImageFormat, RenderRequest
from ..services.key_deriver import derive
from ..services.metadata_service import render_meta_tags
from ..utils.debug import print_step

router = APIRouter(prefix="/og", tags=["og"])

_FORMAT_PATTERN = "^(png|jpe?g|webp|svg)$"


def _service(request: Request):
    return request.app.state.og_service


def _http_error(e: OGImageError) -> HTTPException:
    if isinstance(e, TemplateNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if e.transient:
        return HTTPException(status_code=503, detail=f"Temporary failure generating OG image: {e}")
    return HTTPException(status_code=400, detail=f"Failed to generate OG image: {e}")


async def _image_response(request: Request, render_request: RenderRequest) -> Response:
    og_service = _service(request)
    try:
        artifact = await og_service.get_or_render_with_fallback(render_request)
    except OGImageError as e:
        print_step("OG Image Generation Failed", str(e), "error")
        raise _http_error(e)
    except Exception as e:
        print_step("OG Image Generation Failed", str(e), "error")
        raise HTTPException(status_code=500, detail=f"Failed to generate OG image: {str(e)}")

    max_age = int(og_service.image_ttl or og_service.cache.default_ttl)
    return Response(
        content=artifact.data,
        media_type=artifact.content_type,
        headers={
            "Cache-Control": f"public, max-age={max_age}, immutable",
            "Content-Disposition": f"inline; filename={render_request.template}-og.{artifact.extension}",
            "X-Cache-Key": derive(dataclasses.replace(render_request, format=artifact.format)),
        }
    )


@router.get("/templates")
async def list_templates(request: Request):
    """List the registered OG image templates."""
    return {"templates": _service(request).templates()}


@router.get("/image/{template}")
async def generate_og_image(
    request: Request,
    template: str,
    title: Optional[str] = Query(None, max_length=500, description="Main heading"),
    description: Optional[str] = Query(None, max_length=1000, description="Secondary text"),
    width: Optional[int] = Query(None, ge=1, le=10000, description="Image width in px"),
    height: Optional[int] = Query(None, ge=1, le=10000, description="Image height in px"),
    background_color: Optional[str] = Query(None, max_length=32),
    text_color: Optional[str] = Query(None, max_length=32),
    accent_color: Optional[str] = Query(None, max_length=32),
    font_family: Optional[str] = Query(None, max_length=64),
    site_name: Optional[str] = Query(None, max_length=100),
    logo_url: Optional[str] = Query(None, max_length=2048),
    background_url: Optional[str] = Query(None, max_length=2048),
    format: str = Query("png", pattern=_FORMAT_PATTERN, description="Output format"),
):
    """
    Generate a dynamic Open Graph image from a named template.

    Returns the image (1200x630 by default) with Cache-Control headers
    matching the server-side cache TTL.
    """
    params = {
        "title": title,
        "description": description,
        "width": width,
        "height": height,
        "background_color": background_color,
        "text_color": text_color,
        "accent_color": accent_color,
        "font_family": font_family,
        "site_name": site_name,
        "logo_url": logo_url,
        "background_url": background_url,
    }
    params = {name: value for name, value in params.items() if value is not None}

    print_step("OG Image Request", {
        "template": template,
        "params": sorted(params),
        "format": format,
    }, "input")

    return await _image_response(request, RenderRequest(template=template, params=params, format=format))


@router.post("/image")
async def generate_og_image_from_body(request: Request):
    """
    Generate an OG image from a JSON body:
    {"template": "layered", "params": {...}, "format": "png"}
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")

    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    template = body.get("template", "simple")
    params = body.get("params", {})
    if not isinstance(template, str) or not isinstance(params, dict):
        raise HTTPException(status_code=400, detail="'template' must be a string and 'params' an object")

    try:
        output_format = ImageFormat.parse(body.get("format", "png"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {body.get('format')}")

    print_step("OG Image Request", {
        "template": template,
        "param_keys": sorted(params.keys()),
        "format": output_format.value,
    }, "input")

    return await _image_response(request, RenderRequest(template=template, params=params, format=output_format))


@router.get("/meta")
async def page_metadata(
    request: Request,
    path: str = Query(..., max_length=2048, description="Page path"),
    title: str = Query(..., max_length=500),
    description: Optional[str] = Query(None, max_length=1000),
    template: str = Query("simple", max_length=64),
    site_name: Optional[str] = Query(None, max_length=100),
    user_agent: Optional[str] = Header(None),
):
    """Open Graph / Twitter meta tags for a page, pointing og:image at this service."""
    metadata_service = request.app.state.metadata_service
    tags = metadata_service.page_metadata(
        path=path,
        title=title,
        description=description,
        template=template,
        site_name=site_name,
        user_agent=user_agent,
    )
    return {"tags": tags, "html": render_meta_tags(tags)}


@router.get("/stats")
async def og_stats(request: Request):
    og_service = _service(request)
    return {
        "cache": og_service.cache_stats().to_dict(),
        "metrics": og_service.get_metrics().to_dict(),
        "in_flight": og_service.coordinator.pending_count,
    }


@router.delete("/cache")
async def clear_og_cache(request: Request):
    _service(request).clear_cache()
    print_step("OG Cache Cleared", None, "info")
    return {"status": "cleared"}
