from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academy.api.admin import router as admin_router
from academy.api.bootstrap import router as bootstrap_router
from academy.api.courses import router as courses_router
from academy.api.dependencies import catalog_store
from academy.api.errors import install_error_handlers
from academy.api.health import router as health_router
from academy.api.metrics_endpoint import router as metrics_router
from academy.api.profile import router as profile_router
from academy.api.progress import router as progress_router
from academy.api.session import router as session_router
from academy.core.config import SETTINGS
from academy.core.logging import setup_logging
from academy.db.engine import lifespan_db
from academy.db.redis import lifespan_redis
from academy.middleware.metrics import MetricsMiddleware
from academy.middleware.request_context import RequestContextMiddleware
from academy.models.course import MediaKind
from academy.repos.catalog_repo import CatalogRepo

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)

SAMPLE_GROUP_ID = "sample-learners"


async def seed_sample_catalog(catalog: CatalogRepo) -> None:
    """One small course for local development, mapped to SAMPLE_GROUP_ID."""
    if await catalog.list_courses():
        return
    course = await catalog.add_course(
        slug="getting-started", title="Getting Started", description="A tour of the platform."
    )
    basics = await catalog.add_module(course.id, slug="basics", title="Basics")
    await catalog.add_lesson(basics.id, slug="welcome", title="Welcome")
    await catalog.add_lesson(
        basics.id, slug="first-video", title="Your first video", media_kind=MediaKind.VIDEO
    )
    extras = await catalog.add_module(course.id, slug="extras", title="Extras")
    await catalog.add_lesson(
        extras.id, slug="podcast", title="Podcast episode", media_kind=MediaKind.AUDIO
    )
    await catalog.set_course_groups(course.id, frozenset({SAMPLE_GROUP_ID}))
    logger.info("Seeded sample course %s", course.slug)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            if SETTINGS.is_dev and not SETTINGS.database_url:
                await seed_sample_catalog(catalog_store)
            yield


app = FastAPI(
    title="academy-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_error_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(session_router)
app.include_router(profile_router)
app.include_router(courses_router)
app.include_router(progress_router)
app.include_router(bootstrap_router)
app.include_router(admin_router)

logger.info(
    "academy-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
