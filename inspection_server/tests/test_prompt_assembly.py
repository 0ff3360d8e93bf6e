from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_server.prompt_assembly import (  # noqa: E402
    DEFAULT_PROMPT_TEMPLATE,
    DEFAULT_TYPE_NAME,
    PromptAssembler,
    apply_prompt_placeholders,
    build_checklist_request_text,
    build_checklist_system_prompt,
)


def test_default_template_substitutes_both_placeholders(tmp_path: Path):
    assembler = PromptAssembler(tmp_path / "missing")

    prompt = assembler.assemble("cloud", "鋼筋", "項目A")

    assert "{{TYPE_NAME}}" not in prompt
    assert "{{CHECKLIST}}" not in prompt
    assert "請你作為嚴格的鋼筋品質檢查員" in prompt
    assert "項目A" in prompt


def test_provider_template_override_is_used(tmp_path: Path):
    (tmp_path / "local_analysis_prompt.txt").write_text(
        "Inspect as {{ type_name }}.\n{{CHECKLIST}}\nAgain: {{TYPE_NAME}}",
        encoding="utf-8",
    )
    assembler = PromptAssembler(tmp_path)

    local_prompt = assembler.assemble("local", "模板", "- 垂直精度")
    cloud_prompt = assembler.assemble("cloud", "模板", "- 垂直精度")

    assert local_prompt == "Inspect as 模板.\n- 垂直精度\nAgain: 模板"
    assert cloud_prompt.startswith("請你作為嚴格的模板品質檢查員")


def test_unreadable_template_falls_back_to_default(tmp_path: Path):
    (tmp_path / "cloud_analysis_prompt.txt").mkdir()
    assembler = PromptAssembler(tmp_path)

    prompt = assembler.assemble("cloud", "鋼筋", "項目A")

    assert prompt == apply_prompt_placeholders(DEFAULT_PROMPT_TEMPLATE, "鋼筋", "項目A")


def test_blank_inputs_use_generic_label_and_empty_checklist(tmp_path: Path):
    (tmp_path / "cloud_analysis_prompt.txt").write_text("[{{TYPE_NAME}}][{{CHECKLIST}}]", encoding="utf-8")
    assembler = PromptAssembler(tmp_path)

    assert assembler.assemble("cloud", "   ", None) == f"[{DEFAULT_TYPE_NAME}][]"
    assert assembler.assemble("cloud", None, 42) == f"[{DEFAULT_TYPE_NAME}][]"


def test_placeholder_values_are_inserted_literally():
    rendered = apply_prompt_placeholders("{{TYPE_NAME}} / {{CHECKLIST}}", r"C:\temp \1", r"\g<0>")

    assert rendered == r"C:\temp \1 / \g<0>"


def test_checklist_request_text_embeds_requested_name_and_minimum():
    cloud_text = build_checklist_request_text("")
    local_text = build_checklist_request_text("瀝青鋪築", min_items=8)

    assert '"name": "自訂檢查項目"' in cloud_text
    assert "至少" not in cloud_text
    assert '"name": "瀝青鋪築"' in local_text
    assert "至少 8 項" in local_text
    assert "至少 8 項" in build_checklist_system_prompt(min_items=8)
