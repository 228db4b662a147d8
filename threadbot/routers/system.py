from typing import Any

from fastapi import APIRouter, Depends

from threadbot.core.app_state import AppState
from threadbot.routers.utils.dependencies import get_app_state

router = APIRouter(
    prefix="/system",
    tags=["system"],
)


@router.get("/health")
def health(app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """Liveness plus the platforms this process accepts webhooks for."""
    return {
        "status": "ok",
        "platforms": app_state.adapters.platforms(),
        "state_backend": app_state.settings.state_backend,
    }
