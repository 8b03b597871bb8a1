"""FastAPI application entrypoint for the social chat server."""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from . import auth, messages, realtime, users
from .config import FRONTEND_URL, HOST, MAX_UPLOAD_BYTES, PORT, UPLOAD_DIR
from .database import Base, SessionLocal
from .logging_config import configure_logging
from .store import MessageStore, UserDirectory

logger = configure_logging()


@dataclass
class Settings:
    upload_dir: Path = UPLOAD_DIR
    max_upload_bytes: int = MAX_UPLOAD_BYTES


def create_app(session_factory: Optional[sessionmaker] = None, settings: Optional[Settings] = None) -> FastAPI:
    session_factory = session_factory or SessionLocal
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=session_factory.kw["bind"])
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
        # A fresh process has an empty registry, so nobody is online yet.
        await run_in_threadpool(app.state.user_directory.reset_online_flags)
        logger.info("SERVER_STARTED upload_dir=%s", settings.upload_dir)
        yield
        await app.state.channel.drain()
        logger.info("SERVER_STOPPED")

    app = FastAPI(title="Social Chat Server", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.message_store = MessageStore(session_factory)
    app.state.user_directory = UserDirectory(session_factory)
    app.state.channel = realtime.ChannelServer(
        app.state.message_store,
        app.state.user_directory,
        upload_dir=settings.upload_dir,
    )

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(messages.router)
    app.include_router(messages.uploads_router)
    app.include_router(realtime.router)

    @app.get("/")
    def root():
        return {"status": "ok"}

    return app


app = create_app()


def main():
    uvicorn.run("social_chat.server.main:app", host=HOST, port=PORT, reload=False)


if __name__ == "__main__":
    main()
