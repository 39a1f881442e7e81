# immobot/main.py
from fastapi import FastAPI
from .api.routes import router as api_router
from .config import load_settings
from .db import init_db, make_engine, make_session_factory


def create_app(session_factory, settings, scheduler=None) -> FastAPI:
    """Status surface over the listing store. ``scheduler`` enables forced checks."""
    app = FastAPI(title="ImmoBot status")
    app.state.session_factory = session_factory
    app.state.settings = settings
    app.state.scheduler = scheduler
    app.include_router(api_router)
    return app


def build_app() -> FastAPI:
    # standalone: `uvicorn immobot.main:build_app --factory`
    settings = load_settings()
    engine = make_engine(settings.database_url)
    init_db(engine)
    return create_app(make_session_factory(engine), settings)
