"""
Thumbnail generation for image attachments.

Thumbnails are small JPEG data URLs stored on the item itself, so item
lists render without touching any blob and JSON backups keep a preview
even when the full files are not exported.
"""

import base64
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from luxeledger.models.attachment import Thumbnail
from luxeledger.services.storage.interface import StorageError


DEFAULT_MAX_PX = 320
DEFAULT_QUALITY = 82


class ThumbnailError(StorageError):
    """The bytes could not be decoded as an image."""
    pass


def make_thumbnail(
    data: bytes,
    name: str = "",
    max_px: int = DEFAULT_MAX_PX,
    quality: int = DEFAULT_QUALITY,
) -> Thumbnail:
    """
    Scale an image so its longest side is at most `max_px`.

    Images already within the bound keep their size (never upscaled).
    Transparency is flattened onto white because JPEG has no alpha.

    Args:
        data: Encoded image bytes (any format Pillow reads)
        name: Original file name, kept on the thumbnail
        max_px: Longest-side bound in pixels
        quality: JPEG quality, 1-95

    Returns:
        Thumbnail with a data:image/jpeg;base64 URL

    Raises:
        ThumbnailError: If the bytes are not a readable image
    """
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ThumbnailError(f"Cannot read image {name!r}: {e}") from e

    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    # thumbnail() keeps aspect ratio and never enlarges
    img.thumbnail((max_px, max_px))

    buffer = BytesIO()
    img.save(buffer, format="JPEG", quality=quality)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return Thumbnail(thumb_data_url=f"data:image/jpeg;base64,{encoded}", name=name)
