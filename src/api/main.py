"""Blog Workflow API.

Queues multi-phase blog generations, tracks them for polling clients and
runs workflow models in-process:
- Generation queue (create, poll, cancel, external job callbacks)
- Workflow models (declarative multi-phase recipes)
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import workflows
from src.executor import queue_manager
from src.executor.db import init_db
from src.postprocessing.registry import get_post_processor_registry
from src.workflows.registry import get_workflow_model_registry

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: database and registries
    logger.info("Initializing workflow database...")
    init_db()

    logger.info("Loading workflow models...")
    model_registry = get_workflow_model_registry()
    logger.info(f"Loaded {model_registry.count()} workflow models: {model_registry.get_model_ids()}")

    logger.info("Registering post-processors...")
    post_processors = get_post_processor_registry()
    logger.info(f"Registered {len(post_processors.names())} post-processors")

    logger.info("Blog Workflow API ready")
    yield
    # Shutdown
    logger.info("Shutting down Blog Workflow API")


# Create FastAPI app
app = FastAPI(
    title="Blog Workflow API",
    description="""
## Multi-phase blog generation

Generation requests are queued and handed to the Blog Writer API as async
jobs. Clients poll the queue item for progress and the finished article.

### Key Endpoints

- `POST /v1/workflow/multi-phase` - Queue a generation
- `GET /v1/workflow/multi-phase?queue_id=...` - Poll a queue item
- `DELETE /v1/workflow/multi-phase?queue_id=...` - Cancel a queue item
- `GET /v1/workflow/models` - List workflow models
- `POST /v1/workflow/models/run` - Run a workflow model in-process
""",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /v1 prefix
app.include_router(workflows.router, prefix="/v1")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Turn unexpected errors into JSON, failing the request's queue item first."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    queue_id = getattr(request.state, "queue_id", None)
    if queue_id:
        try:
            queue_manager.mark_failed(queue_id, str(exc) or type(exc).__name__)
        except Exception as e:
            logger.warning(f"Could not mark queue item {queue_id} failed: {e}")
    body = {"error": str(exc) or "Internal server error"}
    if queue_id:
        body["queue_id"] = queue_id
        body["status"] = "failed"
    return JSONResponse(status_code=500, content=body)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Blog Workflow API",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "multi_phase": "/v1/workflow/multi-phase",
            "models": "/v1/workflow/models",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    model_registry = get_workflow_model_registry()
    return {
        "status": "healthy",
        "workflow_models_loaded": model_registry.count(),
        "post_processors": get_post_processor_registry().names(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=False,
    )
