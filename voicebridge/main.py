"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from voicebridge.api import health, media_stream
from voicebridge.api.webhooks import voice
from voicebridge.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    yield


app = FastAPI(
    title="AI Voice Receptionist",
    description="Bridges Twilio Media Streams to the OpenAI Realtime API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(media_stream.router, tags=["media"])


@app.get("/")
async def root():
    return {
        "message": "AI Voice Receptionist",
        "version": "0.1.0",
    }
