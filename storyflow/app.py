"""Application factory for the StoryFlow FastAPI backend."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_settings
from .routers import ai, foundations, settings, stages, stories


API_PREFIX = "/api"


def create_app() -> FastAPI:
    """Create and configure a FastAPI application instance."""
    configure_logging()
    app_settings = get_settings()
    app = FastAPI(
        title="StoryFlow Backend",
        version="0.1.0",
        description="Guided, AI-assisted story world creation backend for StoryFlow.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.allowed_origins),
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = app_settings
    for module in (stages, foundations, stories, settings, ai):
        app.include_router(module.router, prefix=API_PREFIX)
    return app


app = create_app()
