"""Image asset resolution and load probes.

The classifier identifies photos by id only. `make_url_resolver` maps an id
to a fetchable URL (HTTP upload endpoint or a local `file://` URI), and
`probe_asset` reports whether that URL yields a decodable image. Probes
never raise: every failure is a False result.
"""
import io
import logging
from collections.abc import Callable
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

import requests
from PIL import Image

from settings import Settings

logger = logging.getLogger(__name__)

UrlResolver = Callable[[str], str]


def make_url_resolver(settings: Settings) -> UrlResolver:
    """Return id -> URL.

    With `asset_base_url` set: `<base>/uploads/<quoted id>` (the upload
    service layout). Otherwise a `file://` URI inside `uploads_dir`.
    """
    if settings.asset_base_url:
        base = settings.asset_base_url.rstrip("/")
        return lambda image_id: f"{base}/uploads/{quote(image_id, safe='')}"

    uploads = settings.uploads_dir.resolve()
    return lambda image_id: (uploads / image_id).as_uri()


def probe_asset(url: str, timeout: float = 10.0) -> bool:
    """True if `url` resolves to an image Pillow can verify."""
    if not url:
        return False
    parsed = urlparse(url)
    try:
        if parsed.scheme in ("http", "https"):
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
            _verify_image(io.BytesIO(response.content))
            return True
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(url)
        if not path.is_file():
            return False
        with path.open("rb") as fh:
            _verify_image(fh)
        return True
    except (requests.RequestException, OSError, SyntaxError, ValueError) as exc:
        # PIL raises SyntaxError for some truncated/corrupt headers
        logger.debug("Asset probe failed for %s: %s", url, exc)
        return False


def _verify_image(fp) -> None:
    with Image.open(fp) as img:
        img.verify()
