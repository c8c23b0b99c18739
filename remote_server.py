import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import server as mcp_server
from core.gateway import DEFAULT_PAGE_LIMIT, ResourceNotFound
from core.server import DualResponseServer
from observability.metrics import metrics_content_type, metrics_payload_bytes
from storage import QueryExecutionError

logger = logging.getLogger(__name__)

REMOTE_BIND = os.getenv("REMOTE_BIND", "0.0.0.0:3000")
RESOURCE_SWEEP_INTERVAL = float(os.getenv("RESOURCE_SWEEP_INTERVAL", "60"))


class SortSpec(BaseModel):
    field: str
    order: str = "asc"


class PageRequest(BaseModel):
    offset: int = Field(0, ge=0)
    limit: int = Field(DEFAULT_PAGE_LIMIT, ge=0)
    sort: Optional[SortSpec] = None


def _not_found(e: ResourceNotFound) -> JSONResponse:
    return JSONResponse({"error": "not_found", "message": e.message}, status_code=404)


def _query_failed(e: QueryExecutionError) -> JSONResponse:
    return JSONResponse({"error": "query_failed", "message": str(e)}, status_code=500)


def create_app(dual: Optional[DualResponseServer] = None) -> FastAPI:
    """Build the HTTP surface around a DualResponseServer.

    The /resources routes and the /mcp endpoint share the server's registry, so
    handles minted by the query tool are immediately retrievable here. The
    /resources routes are only mounted in dual-response mode.
    """
    dual = dual or mcp_server.get_server_singleton()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if dual.resources.default_ttl_seconds is not None:
            dual.resources.start_sweeper(RESOURCE_SWEEP_INTERVAL)
        try:
            yield
        finally:
            dual.resources.stop_sweeper()

    app = FastAPI(title="Dual-Response MCP Server", version=mcp_server.SERVER_VERSION, lifespan=lifespan)
    app.state.dual = dual

    # Basic CORS (can be tightened as needed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"]
    )

    @app.post("/mcp")
    def mcp_endpoint(payload: dict):
        # Expect MCP-style JSON-RPC payload
        result = mcp_server.handle_message(payload, dual)
        if result is None:
            return Response(status_code=202)
        return JSONResponse(result)

    if dual.dual_response:
        if dual.debug:
            @app.get("/resources/")
            def list_resources():
                logger.debug("[REST] GET /resources/ (debug listing)")
                return dual.resources.stats()

        @app.get("/resources/{resource_id}")
        def read_resource(resource_id: str, skip: int = Query(0, ge=0), limit: Optional[int] = Query(None, ge=0)):
            logger.debug("[REST] GET /resources/%s skip=%s limit=%s", resource_id, skip, limit)
            try:
                return dual.gateway.read_window(resource_id, skip=skip, limit=limit)
            except ResourceNotFound as e:
                return _not_found(e)
            except QueryExecutionError as e:
                return _query_failed(e)

        @app.post("/resources/{resource_id}")
        def page_resource(resource_id: str, body: Optional[PageRequest] = None):
            body = body or PageRequest()
            sort = body.sort.model_dump() if body.sort is not None else None
            logger.debug("[REST] POST /resources/%s offset=%s limit=%s sort=%s", resource_id, body.offset, body.limit, sort)
            try:
                return dual.gateway.read_page(resource_id, offset=body.offset, limit=body.limit, sort=sort)
            except ResourceNotFound as e:
                return _not_found(e)
            except QueryExecutionError as e:
                return _query_failed(e)

        @app.delete("/resources/{resource_id}")
        def delete_resource(resource_id: str):
            logger.debug("[REST] DELETE /resources/%s", resource_id)
            try:
                dual.gateway.delete(resource_id)
            except ResourceNotFound as e:
                return _not_found(e)
            return Response(status_code=204)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "mode": "dual-response" if dual.dual_response else "standard",
            "debug": dual.debug,
            "resources": len(dual.resources),
        }

    @app.get("/metrics")
    def metrics():
        return Response(content=metrics_payload_bytes(), media_type=metrics_content_type())

    return app


# Entrypoint helper
async def serve(app: Optional[FastAPI] = None):
    host, port = REMOTE_BIND.rsplit(":", 1)
    import uvicorn
    config = uvicorn.Config(app or create_app(), host=host, port=int(port), log_level="info")
    http_server = uvicorn.Server(config)
    logger.info("Resources endpoint: http://%s:%s/resources/{id}", host, port)
    await http_server.serve()


if __name__ == "__main__":
    import asyncio
    asyncio.run(serve())
