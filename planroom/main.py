"""
Planroom HTTP service.

Run with ``python -m planroom.main`` or ``uvicorn planroom.main:app``.
"""

import logging
import os
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planroom.api.sessions_api import router as sessions_router


logging.basicConfig(
    level=os.environ.get("PLANROOM_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
    force=True,
)

# HTTP client chatter drowns out run-loop logs
for noisy in ("httpcore", "httpx", "openai"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


app = FastAPI(
    title="Planroom",
    description="Personal assistants planning together in a group chat",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("PLANROOM_CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)


@app.get("/")
async def root():
    return {
        "name": app.title,
        "version": app.version,
        "endpoints": {"sessions": "/api/sessions", "health": "/health"},
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get("PLANROOM_HOST", "0.0.0.0"),
        port=int(os.environ.get("PLANROOM_PORT", "8000")),
    )
