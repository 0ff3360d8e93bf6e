from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


def test_inspection_endpoints_are_wired_in_main():
    source = (REPO_ROOT / "inspection_server" / "main.py").read_text(encoding="utf-8")

    assert '@app.get("/api/model-config")' in source
    assert '@app.post("/api/prompt")' in source
    assert '@app.post("/api/anthropic")' in source
    assert '@app.post("/api/ollama")' in source
    assert '@app.post("/api/parse-checklist")' in source
    assert '@app.get("/api/inspection-types")' in source
    assert '@app.post("/api/inspection-types")' in source
    assert '@app.delete("/api/inspection-types/{type_id}")' in source


def test_default_inspection_types_ship_with_package():
    path = REPO_ROOT / "inspection_server" / "data" / "inspection_types.json"
    source = path.read_text(encoding="utf-8")

    assert '"currentType": "rebar"' in source
