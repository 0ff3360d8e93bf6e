from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

PROMPT_PROVIDERS = ("cloud", "local")
PROMPT_FILE_NAMES = {
    "cloud": "cloud_analysis_prompt.txt",
    "local": "local_analysis_prompt.txt",
}

DEFAULT_TYPE_NAME = "施工品質檢查"
PLACEHOLDER_CHECKLIST_NAME = "自訂檢查項目"

_TYPE_NAME_PLACEHOLDER = re.compile(r"\{\{\s*TYPE_NAME\s*\}\}", flags=re.IGNORECASE)
_CHECKLIST_PLACEHOLDER = re.compile(r"\{\{\s*CHECKLIST\s*\}\}", flags=re.IGNORECASE)

DEFAULT_PROMPT_TEMPLATE = """請你作為嚴格的{{TYPE_NAME}}品質檢查員，執行詳細的缺失檢查任務。這是一個【缺失識別專用工具】，上傳的照片一定存在缺失問題，你的任務是找出照片中不符合標準的問題點。

【可用檢查項目及標準】
{{CHECKLIST}}

【重要前提】
- 輸出格式文字一定使用繁體中文
- 上傳的照片一定有缺失或不符合標準的地方
- 絕對不能回報「沒有問題」或「完全符合標準」
- 必須以挑剔且嚴格的標準來檢查
- 即使是輕微的瑕疵也必須指出並視為缺失

【智能檢查流程】
📋 **第一階段：照片內容分析**
1. 仔細觀察照片，識別以下要素：
   - 工程類型：鋼筋工程/模板工程/混凝土工程等
   - 施工階段：準備階段/施工中/完成階段
   - 可見元素：具體的構件、材料、工具、人員等
   - 拍攝角度：正面/側面/俯視/仰視等視角信息

🎯 **第二階段：智能項目選擇**
基於照片內容，使用以下決策邏輯選擇2-3個最相關的檢查項目：

**如果照片顯示鋼筋相關內容：**
- 看到鋼筋綁紮 → 重點檢查「鋼筋間距」「綁紮固定」
- 看到鋼筋搭接 → 重點檢查「搭接長度」「搭接位置」
- 看到鋼筋表面 → 重點檢查「鋼筋表面處理」「鋼筋儲存」
- 看到保護層 → 重點檢查「鋼筋保護層」

**如果照片顯示模板相關內容：**
- 看到模板安裝 → 重點檢查「模板位置」「垂直精度」
- 看到支撐系統 → 重點檢查「模板斜撐」「緊結器」
- 看到模板接縫 → 重點檢查「模板精度」「清潔孔」

**如果照片顯示混凝土相關內容：**
- 看到澆置過程 → 重點檢查「澆置順序」「振動作業」
- 看到混凝土表面 → 重點檢查「表面質量」「養護措施」
- 看到試體製作 → 重點檢查「試體製作」「材料檢測」

**選擇標準：**
- 必須說明為什麼選擇這些項目
- 項目必須與照片可見內容直接相關
- 優先選擇可以明確觀察和測量的項目

📊 **第三階段：標準對照檢查**
對每個選定的檢查項目，執行以下標準化檢查：

1. **標準明確化**：清楚說明該項目的具體標準要求
2. **實際觀察**：詳細描述照片中該項目的實際狀況
3. **偏差分析**：對比標準與實際，識別具體偏差
4. **量化評估**：盡可能提供數值化的偏差描述

🔍 **第四階段：系統化缺失識別**
必須找出具體的缺失問題，包括但不限於：
- 尺寸偏差、位置偏移（提供具體數值或範圍）
- 施工不當、工藝缺陷（描述具體問題）
- 材料瑕疵、表面問題（指出具體位置）
- 安全隱患、潛在風險（評估風險等級）
- 不符合規範的細節（說明違反的具體規範）

【檢查重點】
- 仔細觀察每個細節，不放過任何瑕疵
- 對比標準要求，找出偏差和不足
- 考慮長期使用可能產生的問題
- 從安全性、耐久性、美觀性等多角度檢查

請嚴格按照以下格式回應：

**主要檢查項目：**[說明選擇的2-3個檢查項目，並解釋選擇理由]

**照片內容分析：**[詳細描述照片中的工程配置、施工狀況和可見細節]

**標準對照檢查：**
[對每個選定項目進行標準對照]
- 項目1：[項目名稱] 
  * 標準要求：[具體標準]
  * 實際觀察：[照片中的實際情況]
  * 偏差分析：[標準與實際的差異]

**發現的缺失：**[必須列出具體的缺失問題，包括：問題位置、與標準的偏差、嚴重程度評估。不允許說沒有問題]

**改善建議：**[針對每個發現的缺失提供具體的改善措施和預防方法]

**整體評估：**[評估缺失的影響程度和建議的處理優先級，必須包含需要改善的結論]

記住：這是專業的缺失檢查工具，任何工程照片都存在可以改善的地方，必須以最嚴格的標準找出這些缺失。"""

LOCAL_ANALYSIS_SYSTEM_PROMPT = (
    "You are a meticulous construction quality inspector who flags every potential defect "
    "and explains the reasoning clearly."
)

LOCAL_CHECKLIST_SYSTEM_PROMPT = """你是一位專精於土建工程的品質檢查助理，負責從掃描影像或文件中精準抽取檢查表。
嚴格遵守以下規範：
1. 只能輸出符合指定結構的 JSON，禁止任何額外文字、註解或 markdown。
2. "name" 欄位必須填入文件最上方的正式標題文字（例如「瀝青混凝土鋪築工程自主檢查表」），若文件沒有標題才可使用使用者提供的名稱。
3. "items" 陣列必須完整列出表格中所有檢查項目，不得省略；若影像品質差無法讀取，也要根據資料合理推測列出至少 {min_items} 項。
4. 每個項目需包含：emoji 圖示（單一 emoji）、簡潔的項目名稱，以及以繁體中文描述的具體檢查標準。
5. 若文件包含多列表格，須逐列解析並組合為完整的檢查項目列表。"""

_CHECKLIST_REQUEST_TEMPLATE = """請仔細分析這份品質檢查表，提取出所有的檢查項目和對應的檢查標準。

請按照以下JSON格式回應，不要包含任何其他文字：

{{
  "name": "{checklist_name}",
  "description": "從檢查表中提取的檢查項目",
  "items": [
    {{
      "name": "檢查項目名稱",
      "icon": "🔧",
      "standard": "具體的檢查標準或要求"
    }}
  ]
}}

注意事項：
1. 請提取所有能識別的檢查項目
2. 為每個項目選擇合適的emoji圖標
"""


def normalize_type_name(type_name: object) -> str:
    if isinstance(type_name, str) and type_name.strip():
        return type_name.strip()
    return DEFAULT_TYPE_NAME


def normalize_checklist_text(checklist_text: object) -> str:
    return checklist_text if isinstance(checklist_text, str) else ""


def apply_prompt_placeholders(template: str, type_name: str, checklist_text: str) -> str:
    # Callables keep backslashes in user text from being read as group references.
    rendered = _TYPE_NAME_PLACEHOLDER.sub(lambda _match: type_name, template)
    return _CHECKLIST_PLACEHOLDER.sub(lambda _match: checklist_text, rendered)


class PromptAssembler:
    """Builds analysis prompts from per-provider template files or the built-in default."""

    def __init__(self, prompts_dir: Path) -> None:
        self.prompts_dir = prompts_dir

    def template_path(self, provider: str) -> Path | None:
        file_name = PROMPT_FILE_NAMES.get(provider)
        if file_name is None:
            return None
        return self.prompts_dir / file_name

    def load_template(self, provider: str) -> str | None:
        template_path = self.template_path(provider)
        if template_path is None:
            return None
        try:
            return template_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to load %s prompt template %s: %s", provider, template_path, exc)
            return None

    def assemble(self, provider: str, type_name: object = None, checklist_text: object = None) -> str:
        template = self.load_template(provider) or DEFAULT_PROMPT_TEMPLATE
        return apply_prompt_placeholders(
            template,
            normalize_type_name(type_name),
            normalize_checklist_text(checklist_text),
        )


def build_checklist_request_text(checklist_name: object, *, min_items: int | None = None) -> str:
    """User instruction asking a model to transcribe a photographed checklist as JSON."""
    requested_name = PLACEHOLDER_CHECKLIST_NAME
    if isinstance(checklist_name, str) and checklist_name:
        requested_name = checklist_name
    notes = [
        "3. 檢查標準要具體明確" + ("，使用繁體中文描述" if min_items else ""),
        "4. 只回應JSON格式，不要額外說明",
    ]
    if min_items:
        notes.append(f"5. 若影像資訊有限，仍需根據此類工程常見規範列出所有應檢項目，至少 {min_items} 項")
    return _CHECKLIST_REQUEST_TEMPLATE.format(checklist_name=requested_name) + "\n".join(notes)


def build_checklist_system_prompt(*, min_items: int) -> str:
    return LOCAL_CHECKLIST_SYSTEM_PROMPT.format(min_items=min_items)
