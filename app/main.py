from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from datetime import datetime, timezone
import logging

# Load environment variables as early as possible
load_dotenv()

from .core.config import settings
from .database import create_db_and_tables
from .exceptions import SchedulingError, scheduling_exception_handler
from .routers import appointments_router, calendar_router, slots_router
from .schemas.common.common import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME} with {settings.STORE_BACKEND} store...")
    app.state.db_init_ok = True
    app.state.db_init_error = None
    if settings.STORE_BACKEND.lower() == "sql":
        try:
            create_db_and_tables()
            logger.info("Database initialized successfully")
        except Exception as e:
            # Do not crash the app; report via health endpoint
            app.state.db_init_ok = False
            app.state.db_init_error = str(e)
            logger.exception("Database initialization failed")
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")


# Initialize FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url=("/docs" if settings.DOCS_ENABLED else None),
    redoc_url=("/redoc" if settings.DOCS_ENABLED else None),
    openapi_url=("/openapi.json" if settings.DOCS_ENABLED else None)
)

app.add_exception_handler(SchedulingError, scheduling_exception_handler)

# GZip compression
app.add_middleware(GZipMiddleware, minimum_size=settings.GZIP_MIN_SIZE)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(slots_router.router)
app.include_router(appointments_router.router)
app.include_router(calendar_router.router)


# Health check endpoint
@app.get("/health", response_model=HealthResponse)
def health_check():
    return HealthResponse(
        status="healthy" if getattr(app.state, "db_init_ok", True) else "degraded",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        store_backend=settings.STORE_BACKEND,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
