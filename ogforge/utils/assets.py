"""
Remote asset fetching for logo and background images.
"""
from typing import Callable

import httpx

from ..core.errors import AssetFetchFailed, EncodingFailed
from .debug import print_step
from .security import validate_asset_url

MAX_ASSET_BYTES = 5 * 1024 * 1024


def make_http_asset_loader(timeout: float = 5.0, max_bytes: int = MAX_ASSET_BYTES) -> Callable[[str], bytes]:
    """
    Build a loader that downloads image assets over HTTP(S).

    Redirects are not followed, so a validated public URL cannot bounce to a
    private address.
    """

    def load(url: str) -> bytes:
        validate_asset_url(url)
        print_step("Asset Fetch", {"url": url}, "input")
        try:
            with httpx.Client(timeout=timeout, follow_redirects=False) as client:
                with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise EncodingFailed(f"Asset {url} returned HTTP {response.status_code}")
                    chunks = []
                    received = 0
                    for chunk in response.iter_bytes():
                        received += len(chunk)
                        if received > max_bytes:
                            raise EncodingFailed(f"Asset {url} exceeds {max_bytes} bytes")
                        chunks.append(chunk)
        except httpx.HTTPError as e:
            print_step("Asset Fetch Error", str(e), "error")
            raise AssetFetchFailed(f"Failed to fetch asset {url}: {e}")

        data = b"".join(chunks)
        print_step("Asset Fetched", {"url": url, "bytes": len(data)}, "output")
        return data

    return load
