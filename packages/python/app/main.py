# main.py: FastAPI application for the chat backend.

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import relaychat as rc
from app.routes import chats_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    rc.common.setup()
    client = rc.common.get_relay_client()
    logger.info(f"Chat backend starting, env={client.env}")
    yield
    logger.info("Chat backend shutting down")


app = FastAPI(title="relaychat", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=rc.common.config.get_list_env("CORS_ORIGINS", ["http://localhost:5173", "http://localhost:3000"]),
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=600,
)

app.include_router(chats_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "3001")))
