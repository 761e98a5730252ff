"""
=============================================================================
MIME TYPE DETECTION
=============================================================================

Maps file extensions to Content-Type values for files served from the
public directory.

    index.html   → text/html; charset=utf-8
    app.js       → text/javascript; charset=utf-8
    logo.png     → image/png
    data.bin     → application/octet-stream   (unknown extension)

Text types get an explicit charset so browsers never have to guess the
encoding of a page or script.

=============================================================================
"""

from pathlib import Path
from typing import Optional


MIME_TYPES = {
    # Documents and code
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".json": "application/json",
    ".map": "application/json",       # Source maps
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",

    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",

    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",

    # Media
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",

    # Binary
    ".wasm": "application/wasm",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Non-text/* types whose payload is still text
TEXT_APPLICATION_TYPES = {
    "application/json",
    "application/manifest+json",
    "application/xml",
    "image/svg+xml",
}


def get_mime_type(path: str | Path, default: Optional[str] = None) -> str:
    """
    Get the MIME type for a file path based on its extension.

    Args:
        path: File name or path. Only the suffix is inspected.
        default: Type returned for unknown extensions.

    Returns:
        MIME type without parameters, e.g. "image/png".
    """
    extension = Path(path).suffix.lower()  # .PNG → .png
    return MIME_TYPES.get(extension, default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    """Check whether a MIME type carries text (and so needs a charset)."""
    return mime_type.startswith("text/") or mime_type in TEXT_APPLICATION_TYPES


def get_content_type(path: str | Path, charset: str = "utf-8") -> str:
    """
    Get a full Content-Type header value for a file.

        get_content_type("index.html")  → "text/html; charset=utf-8"
        get_content_type("photo.jpg")   → "image/jpeg"
    """
    mime_type = get_mime_type(path)

    if is_text_type(mime_type):
        return f"{mime_type}; charset={charset}"
    return mime_type
