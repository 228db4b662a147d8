from fastapi import Request

from threadbot.core.app_state import AppState


def get_app_state(request: Request) -> AppState:
    """FastAPI dependency returning the AppState built at startup."""
    return request.app.state.threadbot
