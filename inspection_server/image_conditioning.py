from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Any

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "image/jpeg"
DEFAULT_QUALITY = 85

_DATA_URI_PREFIX = re.compile(r"^data:[^,]+,")


def strip_data_uri(base64_data: str) -> str:
    """Drop a leading ``data:<type>;base64,`` prefix so providers receive bare base64."""
    return _DATA_URI_PREFIX.sub("", base64_data.strip())


def normalize_media_type(raw_value: Any) -> str:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return DEFAULT_MEDIA_TYPE


def condition_image(
    base64_data: Any,
    media_type: Any,
    target_width: int | None,
    *,
    quality: int = DEFAULT_QUALITY,
    enabled: bool = True,
) -> Any:
    """Downscale a base64 image so it fits ``target_width``.

    Conditioning is best effort: whenever it is disabled, unnecessary or fails,
    the trimmed input comes back untouched. Non-string input is returned as-is.
    """
    if not isinstance(base64_data, str):
        return base64_data
    trimmed = base64_data.strip()
    if not enabled or not trimmed or not target_width:
        return trimmed

    normalized_type = media_type.lower() if isinstance(media_type, str) else DEFAULT_MEDIA_TYPE
    if "gif" in normalized_type:
        # Re-encoding would collapse an animation to its first frame.
        return trimmed

    try:
        return _resize_and_encode(trimmed, normalized_type, target_width, quality)
    except (
        binascii.Error,
        KeyError,
        OSError,
        UnidentifiedImageError,
        ValueError,
        Image.DecompressionBombError,
    ) as exc:
        logger.warning("Image conditioning failed, sending original image: %s", exc)
        return trimmed


def _resize_and_encode(trimmed: str, media_type: str, target_width: int, quality: int) -> str:
    raw_bytes = base64.b64decode(trimmed)
    with Image.open(io.BytesIO(raw_bytes)) as image:
        width, height = image.size
        if not width or width <= target_width:
            return trimmed

        image.load()
        resized = image.copy()
        # thumbnail() keeps the aspect ratio and never enlarges.
        resized.thumbnail((target_width, target_width), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    if "png" in media_type:
        resized.save(buffer, format="PNG", optimize=True, compress_level=9)
    elif "webp" in media_type:
        resized.save(buffer, format="WEBP", quality=quality, method=4)
    elif "avif" in media_type:
        resized.save(buffer, format="AVIF", quality=quality)
    else:
        if resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")
        resized.save(buffer, format="JPEG", quality=quality, optimize=True, progressive=True)

    logger.debug(
        "Conditioned image %sx%s -> %sx%s (%s)",
        width,
        height,
        resized.width,
        resized.height,
        media_type,
    )
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@dataclass(frozen=True)
class ImageConditioner:
    """A named conditioning profile bound to one provider's payload ceiling."""

    name: str
    max_width: int
    quality: int = DEFAULT_QUALITY
    enabled: bool = True

    def condition(self, base64_data: Any, media_type: Any = DEFAULT_MEDIA_TYPE) -> Any:
        return condition_image(
            base64_data,
            media_type,
            self.max_width,
            quality=self.quality,
            enabled=self.enabled,
        )

    async def condition_async(self, base64_data: Any, media_type: Any = DEFAULT_MEDIA_TYPE) -> Any:
        return await asyncio.to_thread(self.condition, base64_data, media_type)

    async def condition_messages(self, messages: Any) -> int:
        """Condition every base64 image part inside Messages-API style ``messages``.

        Parts are rewritten in place. All images are processed concurrently and
        each one falls back to its own original bytes on failure. Returns the
        number of image parts visited.
        """
        if not self.enabled or not isinstance(messages, list):
            return 0

        sources = list(_iter_base64_image_sources(messages))
        if not sources:
            return 0

        conditioned = await asyncio.gather(
            *(
                self.condition_async(source["data"], normalize_media_type(source.get("media_type")))
                for source in sources
            )
        )
        for source, data in zip(sources, conditioned):
            source["data"] = data
        return len(sources)


def _iter_base64_image_sources(messages: list[Any]):
    for message in messages:
        if not isinstance(message, dict) or not isinstance(message.get("content"), list):
            continue
        for part in message["content"]:
            if not isinstance(part, dict) or part.get("type") != "image":
                continue
            source = part.get("source")
            if (
                isinstance(source, dict)
                and source.get("type") == "base64"
                and isinstance(source.get("data"), str)
            ):
                yield source


def build_conditioners(
    *,
    cloud_max_width: int,
    local_max_width: int,
    quality: int = DEFAULT_QUALITY,
    enabled: bool = True,
) -> dict[str, ImageConditioner]:
    return {
        "cloud": ImageConditioner(name="cloud", max_width=cloud_max_width, quality=quality, enabled=enabled),
        "local": ImageConditioner(name="local", max_width=local_max_width, quality=quality, enabled=enabled),
    }
