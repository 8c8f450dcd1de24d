"""Health check, settings, and connection check endpoints."""

import httpx
from fastapi import APIRouter

from backend import llm, storage

from .models import CheckConnectionBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Quick health check against an LLM provider URL."""
    url = llm.health_url(body.model_dump())
    headers: dict[str, str] = {}
    if body.api_key:
        headers["Authorization"] = f"Bearer {body.api_key}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError as e:
        return {"ok": False, "error": str(e) or type(e).__name__}


@router.get("/settings")
async def get_settings():
    """Get global app settings (LLM connection, default genre, engine tunables, prompt)."""
    return storage.get_config()


@router.patch("/settings")
async def update_settings(body: dict):
    """Update global app settings (partial merge)."""
    return storage.update_config(body)
