"""
Content type inference for published assets.
"""

import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Built-in table only; system mime.types files vary between hosts.
_MIME_TYPES = mimetypes.MimeTypes()

# Web assets whose mimetypes answer differs across platforms/Python versions
# or is missing entirely.
WEB_CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",
    ".wasm": "application/wasm",
}


def content_type_for(name: str) -> str:
    """
    Infer the content type of an object from its name.

    Examples:
        content_type_for("index.html")             # "text/html"
        content_type_for("static/js/main.abc.js")  # "text/javascript"
        content_type_for("data.xyz")               # "application/octet-stream"
    """
    suffix = PurePosixPath(name).suffix.lower()
    if not suffix:
        return DEFAULT_CONTENT_TYPE

    if suffix in WEB_CONTENT_TYPES:
        return WEB_CONTENT_TYPES[suffix]

    guessed, _ = _MIME_TYPES.guess_type(f"file{suffix}", strict=False)
    return guessed or DEFAULT_CONTENT_TYPE
