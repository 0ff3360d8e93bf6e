from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_TYPE_ID = "rebar"
CACHE_KEY = "inspection_types"


class InspectionTypeStoreError(ValueError):
    pass


class InspectionTypeNotFoundError(InspectionTypeStoreError):
    pass


class ProtectedInspectionTypeError(InspectionTypeStoreError):
    pass


class InspectionTypeStore:
    """JSON file holding ``{inspectionTypes: {...}, currentType: str}``, fronted by a TTL cache."""

    def __init__(self, *, path: Path, cache: TTLCache) -> None:
        self.path = path
        self.cache = cache

    def _read_file(self) -> dict[str, Any]:
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write_file(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        self.cache.set(CACHE_KEY, payload)

    def load(self) -> dict[str, Any]:
        cached = self.cache.get(CACHE_KEY)
        if cached is not None:
            logger.info("Serving inspection types from cache")
            return cached

        payload = self._read_file()
        self.cache.set(CACHE_KEY, payload)
        return payload

    def save(self, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise InspectionTypeStoreError("Invalid request body.")
        if not isinstance(payload.get("inspectionTypes"), dict):
            raise InspectionTypeStoreError("Missing inspection type data.")
        current_type = payload.get("currentType")
        if not isinstance(current_type, str) or not current_type:
            raise InspectionTypeStoreError("Missing current type setting.")

        self._write_file(payload)
        logger.info("Saved %s inspection types", len(payload["inspectionTypes"]))
        return payload

    def delete(self, type_id: str) -> dict[str, Any]:
        if not isinstance(type_id, str) or not type_id.strip():
            raise InspectionTypeStoreError("Invalid inspection type id.")
        if type_id == DEFAULT_TYPE_ID:
            raise ProtectedInspectionTypeError("The default rebar inspection type cannot be deleted.")

        payload = self._read_file()
        inspection_types = payload.get("inspectionTypes")
        if not isinstance(inspection_types, dict) or type_id not in inspection_types:
            raise InspectionTypeNotFoundError(f"Unknown inspection type '{type_id}'.")

        del inspection_types[type_id]
        if payload.get("currentType") == type_id:
            payload["currentType"] = DEFAULT_TYPE_ID

        self._write_file(payload)
        logger.info("Deleted inspection type %s", type_id)
        return payload
