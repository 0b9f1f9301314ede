"""
Variorum Resolver: Read API
===========================

Read-only API over resolved spine chunks. A chunk is resolved on its
first request and served from memory afterwards.

Endpoints:
- GET /health
- GET /api/v1/editions
- GET /api/v1/spines/{chunk}
- GET /api/v1/spines/{chunk}/apparatus/{app_id}
- GET /api/v1/spines/{chunk}/dropped

Usage:
    uvicorn variorum.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..contracts import UnknownSpine, VariorumError
from ..service import VariorumContext, create_context
from ..spine import ResolverConfig, SpineResolver
from .mapper import (
    ApparatusDTO, DroppedPointerDTO, EditionDTO, SpineDTO,
    map_apparatus, map_dropped, map_edition, map_spine
)


logger = logging.getLogger(__name__)


def create_app(context: Optional[VariorumContext] = None) -> FastAPI:
    """Build the API. Without a context, one is created from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, 'context', None) is None:
            print("[*] Initializing variorum context from environment")
            app.state.context = create_context(ResolverConfig.from_env())
        yield
        print("[*] Shutting down variorum context.")

    app = FastAPI(
        title="Variorum Apparatus Resolver API",
        version="0.1.0",
        description="Read layer over resolved critical apparatus",
        lifespan=lifespan
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],  # read-only
        allow_headers=["*"],
    )

    def get_context() -> VariorumContext:
        if app.state.context is None:
            raise HTTPException(status_code=503, detail="Context not initialized")
        return app.state.context

    async def resolved_spine(chunk: int) -> SpineResolver:
        context = get_context()
        try:
            return await context.resolve(chunk)
        except UnknownSpine as e:
            raise HTTPException(status_code=404, detail=str(e))
        except VariorumError as e:
            logger.error("Resolution of chunk %d failed: %s", chunk, e)
            raise HTTPException(
                status_code=502,
                detail={"code": e.code.name, "message": str(e)}
            )

    @app.get("/health")
    async def health_check():
        context = get_context()
        return {"status": "online", **context.get_stats()}

    @app.get("/api/v1/editions", response_model=List[EditionDTO])
    async def get_editions():
        context = get_context()
        return [map_edition(e) for e in context.registry.all_editions()]

    @app.get("/api/v1/spines/{chunk}", response_model=SpineDTO)
    async def get_spine(chunk: int):
        spine = await resolved_spine(chunk)
        return map_spine(spine, get_context().config.back_reference_attribute)

    @app.get("/api/v1/spines/{chunk}/apparatus/{app_id}", response_model=ApparatusDTO)
    async def get_apparatus(chunk: int, app_id: str):
        spine = await resolved_spine(chunk)
        app_entry = spine.get_apparatus(app_id)
        if app_entry is None:
            raise HTTPException(status_code=404, detail=f"No apparatus {app_id} in chunk {chunk}")
        return map_apparatus(app_entry, get_context().config.back_reference_attribute)

    @app.get("/api/v1/spines/{chunk}/dropped", response_model=List[DroppedPointerDTO])
    async def get_dropped(chunk: int):
        spine = await resolved_spine(chunk)
        return [map_dropped(d) for d in spine.dropped]

    return app


app = create_app()
