from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from .model_output import extract_json_from_text
from .prompt_assembly import PLACEHOLDER_CHECKLIST_NAME

logger = logging.getLogger(__name__)

FALLBACK_ICONS = ("📌", "🛠️", "🔍", "✅", "📏", "🏗️", "🧱", "🔧", "📐", "🧰")
STANDARD_FIELD_ALIASES = ("standard", "criteria", "requirement")


class ChecklistExtractionError(RuntimeError):
    """The model reply held no usable checklist. ``raw`` keeps the offending output."""

    def __init__(self, message: str, *, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


def sanitize_text(value: Any) -> str:
    if not isinstance(value, str) or not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()


def build_fallback_name(requested_name: Any, *, now: datetime | None = None) -> str:
    trimmed = sanitize_text(requested_name)
    if trimmed and trimmed != PLACEHOLDER_CHECKLIST_NAME:
        return trimmed
    moment = now or datetime.now(timezone.utc)
    suffix = int(moment.timestamp() * 1000) % 100000
    return f"自訂檢查類型 {moment.date().isoformat()}#{suffix}"


def normalize_checklist_item(raw_item: Any, *, position: int) -> dict[str, str] | None:
    if not isinstance(raw_item, dict):
        return None

    name = sanitize_text(raw_item.get("name"))
    raw_standard = next(
        (raw_item.get(key) for key in STANDARD_FIELD_ALIASES if raw_item.get(key)),
        None,
    )
    standard = sanitize_text(raw_standard)
    if not name or not standard:
        return None

    icon = sanitize_text(raw_item.get("icon")) or FALLBACK_ICONS[position % len(FALLBACK_ICONS)]
    return {
        "name": name,
        "icon": icon,
        "standard": standard,
    }


def normalize_checklist(
    raw_checklist: Any,
    requested_name: Any,
    provider_label: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Coerce an untrusted model checklist into ``{name, description, items}``.

    Items missing a name or a standard are dropped. Returns ``None`` when the
    payload is not an object or no item survives.
    """
    if not isinstance(raw_checklist, dict):
        return None

    moment = now or datetime.now(timezone.utc)
    date_tag = moment.date().isoformat()

    name = sanitize_text(raw_checklist.get("name"))
    if not name or name == PLACEHOLDER_CHECKLIST_NAME:
        name = build_fallback_name(requested_name, now=moment)

    description = sanitize_text(raw_checklist.get("description"))
    if not description:
        description = f"{name} 的檢查項目 ({provider_label} 產出於 {date_tag})"

    raw_items = raw_checklist.get("items")
    if not isinstance(raw_items, list):
        raw_items = []

    items: list[dict[str, str]] = []
    for position, raw_item in enumerate(raw_items):
        item = normalize_checklist_item(raw_item, position=position)
        if item is not None:
            items.append(item)

    if not items:
        return None

    return {
        "name": name,
        "description": description,
        "items": items,
    }


def checklist_from_model_text(
    text: str,
    *,
    requested_name: Any,
    provider_label: str,
    min_items: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run extraction and normalization over raw model text.

    Raises ``ChecklistExtractionError`` when no JSON is found, nothing survives
    normalization, or fewer than ``min_items`` items remain.
    """
    if not text:
        raise ChecklistExtractionError(f"{provider_label} returned no text content.", raw=text)

    parsed = extract_json_from_text(text)
    if parsed is None:
        logger.warning("%s reply did not contain checklist JSON", provider_label)
        raise ChecklistExtractionError(
            f"Could not parse checklist JSON from the {provider_label} reply.",
            raw=text,
        )

    checklist = normalize_checklist(parsed, requested_name, provider_label, now=now)
    if checklist is None:
        logger.warning("%s reply produced no usable checklist items", provider_label)
        raise ChecklistExtractionError(
            f"{provider_label} did not produce any checklist items. Retake the photo or switch provider.",
            raw=text,
        )

    if min_items and len(checklist["items"]) < min_items:
        logger.warning(
            "%s checklist has %s items, below the minimum of %s",
            provider_label,
            len(checklist["items"]),
            min_items,
        )
        raise ChecklistExtractionError(
            f"{provider_label} produced fewer than {min_items} checklist items. "
            "Upload the checklist again or switch provider.",
            raw=checklist,
        )

    return checklist


async def parse_checklist_image(
    provider: Any,
    *,
    image: Any,
    checklist_name: str | None = None,
    api_key: str | None = None,
    model_override: str | None = None,
) -> dict[str, Any]:
    """Ask ``provider`` to transcribe a photographed checklist and normalize the result."""
    reply = await provider.parse_checklist(
        image=image,
        checklist_name=checklist_name,
        api_key=api_key,
        model_override=model_override,
    )
    checklist = checklist_from_model_text(
        reply.raw_text,
        requested_name=checklist_name,
        provider_label=reply.provider_label,
        min_items=provider.checklist_min_items,
    )
    logger.info(
        "Parsed checklist '%s' with %s items via %s",
        checklist["name"],
        len(checklist["items"]),
        reply.provider_label,
    )
    return {
        "provider": provider.route_id,
        "model": reply.model_used,
        "checklist": checklist,
    }
