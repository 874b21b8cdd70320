from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, get_settings
from app.database import Base, SessionLocal, engine
from app.logging_config import get_logger, setup_logging
from app.routers import operator, widget
from app.services.ai_service import get_ai_responder
from app.services.session_registry import SessionRegistry
from app.services.store import InMemoryStore, RecordStore, SqlAlchemyStore

logger = get_logger("main")


def build_store(config: Settings) -> RecordStore:
    if config.store_backend == "memory":
        return InMemoryStore()
    return SqlAlchemyStore(SessionLocal)


def create_app(store: Optional[RecordStore] = None, config: Optional[Settings] = None, ai=None) -> FastAPI:
    config = config or get_settings()
    setup_logging(config.log_level)

    application = FastAPI(
        title="Chat Widget API",
        description="Conversation routing and sync engine for the embeddable chat widget",
        version="0.1.0",
    )

    cors_origins = [origin.strip() for origin in config.cors_allow_origins.split(",") if origin.strip()]
    if not cors_origins:
        cors_origins = ["*"]

    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(widget.router)
    application.include_router(operator.router)

    store = store or build_store(config)
    if ai is None:
        ai = get_ai_responder()
    application.state.store = store
    application.state.registry = SessionRegistry(store, session_kwargs={"ai": ai, "config": config})

    @application.on_event("startup")
    async def create_tables() -> None:
        if isinstance(application.state.store, SqlAlchemyStore):
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables ready")

    @application.on_event("shutdown")
    async def stop_sessions() -> None:
        await application.state.registry.close_all()

    @application.get("/health")
    async def health():
        return {"status": "ok", "sessions": len(application.state.registry)}

    return application


app = create_app()
