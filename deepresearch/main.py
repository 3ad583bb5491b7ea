from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deepresearch.api.routes import research
from deepresearch.config import settings
from deepresearch.services import logger as log_service
from deepresearch.services.research_store import get_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    init_schema = getattr(store, "init_schema", None)
    if settings.database_init_schema and init_schema is not None:
        await init_schema()
    log_service.log_event(
        event_type="service_started",
        message="DeepResearch API started",
        store=type(store).__name__,
    )
    yield
    # Sessions still running are abandoned in their current status.
    log_service.log_event(event_type="service_stopping", message="DeepResearch API stopping")
    await store.close()


app = FastAPI(
    title="DeepResearch",
    description="Multi-provider deep research with fact verification and streamed progress",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(research.router)


@app.get("/api/health")
async def health():
    store = get_store()
    return {
        "status": "ok",
        "service": "deepresearch",
        "store": type(store).__name__,
    }
