from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .checklist import ChecklistExtractionError, parse_checklist_image
from .image_conditioning import build_conditioners
from .inspection_type_store import (
    InspectionTypeNotFoundError,
    InspectionTypeStore,
    InspectionTypeStoreError,
)
from .prompt_assembly import PROMPT_PROVIDERS, PromptAssembler
from .settings import BASE_DIR, ServerSettings
from .ttl_cache import TTLCache
from .vision_providers import (
    CloudVisionProvider,
    ImageInput,
    ProviderCredentialError,
    VisionProviderError,
    build_default_providers,
)

logger = logging.getLogger(__name__)

WEB_DIR = BASE_DIR.parent / "web"

settings = ServerSettings.from_env()
conditioners = build_conditioners(
    cloud_max_width=settings.cloud_max_width,
    local_max_width=settings.local_max_width,
    quality=settings.image_quality,
    enabled=settings.image_conditioning,
)
providers = build_default_providers(settings, conditioners=conditioners)
prompt_assembler = PromptAssembler(settings.prompts_dir)
inspection_type_store = InspectionTypeStore(
    path=settings.inspection_types_path,
    cache=TTLCache(settings.cache_ttl_seconds),
)

app = FastAPI(title="Photo Inspection Service", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class PromptBody(BaseModel):
    provider: Any = None
    typeName: Any = None
    checklistText: Any = None


class AnalyzeBody(BaseModel):
    provider: Any = None
    prompt: Any = None
    typeName: Any = None
    checklistText: Any = None
    apiKey: Any = None
    imageData: Any = None


class AnthropicProxyBody(BaseModel):
    apiKey: Any = None
    requestData: Any = None


class OllamaBody(BaseModel):
    prompt: Any = None
    imageData: Any = None


class ParseChecklistBody(BaseModel):
    apiKey: Any = None
    imageData: Any = None
    checklistName: Any = None
    provider: Any = None
    localModel: Any = None


def _provider_error_response(exc: VisionProviderError, *, fallback_detail: str) -> JSONResponse:
    if exc.payload is not None:
        return JSONResponse(status_code=exc.status_code or 502, content=exc.payload)
    return JSONResponse(
        status_code=exc.status_code or 500,
        content={"detail": fallback_detail, "error": str(exc)},
    )


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _extraction_error_response(exc: ChecklistExtractionError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc), "raw": exc.raw})


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/model-config")
async def get_model_config():
    return settings.model_config()


@app.post("/api/prompt")
async def build_prompt(body: PromptBody):
    if body.provider not in PROMPT_PROVIDERS:
        raise HTTPException(status_code=400, detail="provider must be 'cloud' or 'local'")
    return {"prompt": prompt_assembler.assemble(body.provider, body.typeName, body.checklistText)}


@app.post("/api/analyze")
async def analyze_photo(body: AnalyzeBody):
    if body.provider not in PROMPT_PROVIDERS:
        raise HTTPException(status_code=400, detail="provider must be 'cloud' or 'local'")

    prompt = _optional_text(body.prompt)
    if prompt is None:
        prompt = prompt_assembler.assemble(body.provider, body.typeName, body.checklistText)

    provider = providers[body.provider]
    try:
        result = await provider.analyze(
            prompt=prompt,
            image=ImageInput.from_payload(body.imageData),
            api_key=body.apiKey,
        )
    except ProviderCredentialError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except VisionProviderError as exc:
        return _provider_error_response(exc, fallback_detail="Photo analysis failed")

    return {
        "provider": body.provider,
        "model": result.model_used,
        "content": [{"text": result.text}],
        "metadata": result.request_metadata,
    }


@app.post("/api/anthropic")
async def proxy_anthropic(body: AnthropicProxyBody):
    if not isinstance(body.apiKey, str) or not body.apiKey:
        raise HTTPException(status_code=400, detail="An API key is required")
    if not isinstance(body.requestData, dict):
        raise HTTPException(status_code=400, detail="Request data is required")

    provider: CloudVisionProvider = providers["cloud"]
    try:
        return await provider.forward_messages(api_key=body.apiKey, request_data=body.requestData)
    except ProviderCredentialError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except VisionProviderError as exc:
        return _provider_error_response(exc, fallback_detail="Cloud provider request failed")


@app.post("/api/ollama")
async def analyze_with_ollama(body: OllamaBody):
    if not isinstance(body.prompt, str) or not body.prompt:
        raise HTTPException(status_code=400, detail="Missing prompt for local analysis")

    try:
        result = await providers["local"].analyze(
            prompt=body.prompt,
            image=ImageInput.from_payload(body.imageData),
        )
    except VisionProviderError as exc:
        return _provider_error_response(exc, fallback_detail="Local model analysis failed")

    return {
        "provider": "ollama",
        "content": [{"text": result.text}],
    }


@app.post("/api/parse-checklist")
async def parse_checklist(body: ParseChecklistBody):
    image = ImageInput.from_payload(body.imageData)
    if image is None:
        raise HTTPException(status_code=400, detail="Checklist image data is required")

    provider_id = "local" if body.provider == "local" else "cloud"
    if provider_id == "cloud" and (not isinstance(body.apiKey, str) or not body.apiKey):
        raise HTTPException(status_code=400, detail="An API key is required")

    try:
        return await parse_checklist_image(
            providers[provider_id],
            image=image,
            checklist_name=_optional_text(body.checklistName),
            api_key=body.apiKey,
            model_override=_optional_text(body.localModel) if provider_id == "local" else None,
        )
    except ProviderCredentialError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except VisionProviderError as exc:
        return _provider_error_response(exc, fallback_detail="Checklist parsing failed")
    except ChecklistExtractionError as exc:
        return _extraction_error_response(exc)


@app.get("/api/inspection-types")
async def list_inspection_types():
    try:
        return inspection_type_store.load()
    except (OSError, ValueError):
        logger.exception("Failed to read inspection types")
        raise HTTPException(status_code=500, detail="Unable to read inspection types")


@app.post("/api/inspection-types")
async def save_inspection_types(body: dict[str, Any]):
    try:
        inspection_type_store.save(body)
    except InspectionTypeStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except OSError:
        logger.exception("Failed to save inspection types")
        raise HTTPException(status_code=500, detail="Unable to save inspection types")
    return {"success": True, "message": "Inspection types saved"}


@app.delete("/api/inspection-types/{type_id}")
async def delete_inspection_type(type_id: str):
    try:
        inspection_type_store.delete(type_id)
    except InspectionTypeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionTypeStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (OSError, ValueError):
        logger.exception("Failed to delete inspection type %s", type_id)
        raise HTTPException(status_code=500, detail="Unable to delete inspection type")
    return {"success": True, "message": "Inspection type deleted"}


if WEB_DIR.exists():
    assets_dir = WEB_DIR / "assets"
    if assets_dir.exists():
        app.mount("/assets", StaticFiles(directory=assets_dir), name="assets")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        return FileResponse(WEB_DIR / "index.html")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("inspection_server.main:app", host="0.0.0.0", port=3000, reload=True)
