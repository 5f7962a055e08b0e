"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import moods, sessions
from settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create app
app = FastAPI(
    title="MoodMap API",
    description="Mood-based nearby place recommendations",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(moods.router, prefix="/moods", tags=["moods"])
app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])


@app.on_event("shutdown")
def shutdown_event():
    """Stop location watches and abandon in-flight cycles; cached state survives for warm restarts."""
    for session_id in list(sessions.registry.sessions_db):
        sessions.registry.close(session_id, clear_cache=False)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "MoodMap API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
