from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_LOCAL_MODEL = "qwen2.5vl:7b"
DEFAULT_CLOUD_MODEL = "claude-3-7-sonnet-20250219"


@dataclass(frozen=True)
class ServerSettings:
    local_model: str = DEFAULT_LOCAL_MODEL
    local_checklist_model: str = ""
    cloud_model: str = DEFAULT_CLOUD_MODEL
    cloud_base_url: str = "https://api.anthropic.com"
    local_base_url: str = "http://127.0.0.1:11434"
    cloud_max_width: int = 1600
    local_max_width: int = 800
    image_quality: int = 85
    image_conditioning: bool = True
    cache_ttl_seconds: float = 300.0
    request_timeout_seconds: float = 300.0
    local_min_items: int = 8
    data_dir: Path = BASE_DIR / "data"
    prompts_dir: Path = BASE_DIR / "prompts"

    @property
    def checklist_model(self) -> str:
        return self.local_checklist_model or self.local_model

    @property
    def inspection_types_path(self) -> Path:
        return self.data_dir / "inspection_types.json"

    def model_config(self) -> dict[str, str]:
        return {
            "localModel": self.local_model,
            "checklistModel": self.checklist_model,
        }

    @classmethod
    def from_env(cls) -> "ServerSettings":
        defaults = cls()
        return cls(
            local_model=os.getenv("INSPECTION_LOCAL_MODEL", "").strip() or defaults.local_model,
            local_checklist_model=os.getenv("INSPECTION_LOCAL_CHECKLIST_MODEL", "").strip(),
            cloud_model=os.getenv("INSPECTION_CLOUD_MODEL", "").strip() or defaults.cloud_model,
            cloud_base_url=os.getenv("INSPECTION_CLOUD_BASE_URL", defaults.cloud_base_url),
            local_base_url=os.getenv("INSPECTION_LOCAL_BASE_URL", defaults.local_base_url),
            cloud_max_width=_parse_positive_int(
                os.getenv("INSPECTION_CLOUD_MAX_WIDTH"),
                fallback=defaults.cloud_max_width,
            ),
            local_max_width=_parse_positive_int(
                os.getenv("INSPECTION_LOCAL_MAX_WIDTH"),
                fallback=defaults.local_max_width,
            ),
            image_quality=max(
                1,
                min(100, _parse_positive_int(os.getenv("INSPECTION_IMAGE_QUALITY"), fallback=defaults.image_quality)),
            ),
            image_conditioning=_parse_bool_env(os.getenv("INSPECTION_IMAGE_CONDITIONING"), default=True),
            cache_ttl_seconds=_parse_timeout_seconds(
                os.getenv("INSPECTION_CACHE_TTL_SECONDS"),
                fallback=defaults.cache_ttl_seconds,
            ),
            request_timeout_seconds=_parse_timeout_seconds(
                os.getenv("INSPECTION_REQUEST_TIMEOUT_SECONDS"),
                fallback=defaults.request_timeout_seconds,
            ),
            local_min_items=_parse_positive_int(
                os.getenv("INSPECTION_LOCAL_MIN_ITEMS"),
                fallback=defaults.local_min_items,
            ),
            data_dir=_parse_path(os.getenv("INSPECTION_DATA_DIR"), fallback=defaults.data_dir),
            prompts_dir=_parse_path(os.getenv("INSPECTION_PROMPTS_DIR"), fallback=defaults.prompts_dir),
        )


def _parse_timeout_seconds(raw_value: str | None, *, fallback: float) -> float:
    if raw_value is None:
        return fallback
    try:
        parsed = float(raw_value)
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


def _parse_positive_int(raw_value: str | None, *, fallback: int) -> int:
    if raw_value is None:
        return fallback
    try:
        parsed = int(raw_value.strip())
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


def _parse_bool_env(raw_value: str | None, *, default: bool) -> bool:
    if raw_value is None:
        return default
    value = raw_value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_path(raw_value: str | None, *, fallback: Path) -> Path:
    if raw_value is None or not raw_value.strip():
        return fallback
    return Path(raw_value.strip()).expanduser()
