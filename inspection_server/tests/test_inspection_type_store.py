from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_server.inspection_type_store import (  # noqa: E402
    CACHE_KEY,
    InspectionTypeNotFoundError,
    InspectionTypeStore,
    InspectionTypeStoreError,
    ProtectedInspectionTypeError,
)
from inspection_server.ttl_cache import TTLCache  # noqa: E402


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _payload(current: str = "rebar") -> dict:
    return {
        "inspectionTypes": {
            "rebar": {"name": "鋼筋檢查", "items": []},
            "formwork": {"name": "模板檢查", "items": []},
        },
        "currentType": current,
    }


def _store(tmp_path: Path, payload: dict | None = None) -> InspectionTypeStore:
    path = tmp_path / "inspection_types.json"
    if payload is not None:
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return InspectionTypeStore(path=path, cache=TTLCache(300))


def test_ttl_cache_expires_and_evicts_on_read():
    clock = _FakeClock()
    cache = TTLCache(300, clock=clock)
    cache.set("key", {"a": 1})

    clock.now += 299
    assert cache.get("key") == {"a": 1}

    clock.now += 1
    assert cache.get("key") is None
    assert len(cache) == 0


def test_ttl_cache_write_replaces_value():
    cache = TTLCache(300)
    cache.set("key", {"a": 1})
    cache.set("key", {"b": 2})

    assert cache.get("key") == {"b": 2}
    cache.evict("key")
    assert cache.get("key") is None


def test_load_reads_file_once_then_serves_cache(tmp_path: Path):
    store = _store(tmp_path, _payload())

    first = store.load()
    store.path.write_text(json.dumps({"inspectionTypes": {}, "currentType": "x"}), encoding="utf-8")
    second = store.load()

    assert first == _payload()
    assert second == _payload()


def test_load_rereads_after_cache_expiry(tmp_path: Path):
    clock = _FakeClock()
    path = tmp_path / "inspection_types.json"
    path.write_text(json.dumps(_payload()), encoding="utf-8")
    store = InspectionTypeStore(path=path, cache=TTLCache(300, clock=clock))

    store.load()
    path.write_text(json.dumps(_payload(current="formwork")), encoding="utf-8")
    clock.now += 301

    assert store.load()["currentType"] == "formwork"


def test_save_validates_and_writes_whole_body(tmp_path: Path):
    store = _store(tmp_path)
    body = _payload(current="formwork")

    store.save(body)

    assert json.loads(store.path.read_text(encoding="utf-8")) == body
    assert store.cache.get(CACHE_KEY) == body


@pytest.mark.parametrize(
    "body",
    [
        None,
        {"currentType": "rebar"},
        {"inspectionTypes": [], "currentType": "rebar"},
        {"inspectionTypes": {}, "currentType": ""},
        {"inspectionTypes": {}},
    ],
)
def test_save_rejects_malformed_bodies(tmp_path: Path, body):
    store = _store(tmp_path)

    with pytest.raises(InspectionTypeStoreError):
        store.save(body)
    assert not store.path.exists()


def test_delete_default_type_is_always_rejected(tmp_path: Path):
    for current in ("rebar", "formwork"):
        store = _store(tmp_path, _payload(current=current))
        with pytest.raises(ProtectedInspectionTypeError):
            store.delete("rebar")
        assert "rebar" in json.loads(store.path.read_text(encoding="utf-8"))["inspectionTypes"]


def test_delete_active_type_resets_current_to_default(tmp_path: Path):
    store = _store(tmp_path, _payload(current="formwork"))

    updated = store.delete("formwork")

    assert updated["currentType"] == "rebar"
    assert "formwork" not in updated["inspectionTypes"]
    assert store.load() == updated


def test_delete_unknown_type_raises_not_found(tmp_path: Path):
    store = _store(tmp_path, _payload())

    with pytest.raises(InspectionTypeNotFoundError):
        store.delete("missing")
    with pytest.raises(InspectionTypeStoreError):
        store.delete("  ")
