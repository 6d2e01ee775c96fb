"""
voxelgraph FastAPI server for the graph editor.

Start with:
    python -m voxelgraph.server.main

Or via uvicorn directly:
    uvicorn voxelgraph.server.main:app --port 3001 --reload

Host and port are read from VOXELGRAPH_HOST / VOXELGRAPH_PORT.
"""
from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voxelgraph.server.routes.graph_routes import router

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001

# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(title="VoxelGraph API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "voxelgraph.server.main:app",
        host=os.environ.get("VOXELGRAPH_HOST", DEFAULT_HOST),
        port=int(os.environ.get("VOXELGRAPH_PORT", DEFAULT_PORT)),
    )


if __name__ == "__main__":
    main()
