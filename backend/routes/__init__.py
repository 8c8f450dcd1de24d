"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, check-connection) and sessions
(CRUD, turns, preview, context, scene changes, characters, transcript).
Each session's child resources are nested under /api/sessions/{id}/.
"""

from fastapi import APIRouter

from .sessions import router as sessions_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(sessions_router)
