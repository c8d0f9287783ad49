"""
Main FastAPI application entry point.
Configures the application, middleware, and includes routers.
"""
from dotenv import load_dotenv

# Load environment variables from .env file first
load_dotenv()

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from .database import Base, SessionLocal, engine
from .config import settings
from .core import audit_models  # noqa: F401  (registers the audit_logs table)
from .registration import models  # noqa: F401  (registers the registration_drafts table)
from .registration.client import RegistrationApiClient
from .registration.persistence import DatabaseDraftStore
from .registration.router import router as registration_router
from .registration.service import RegistrationSessionManager
from .exceptions import register_exception_handlers
from .core.middleware import setup_middlewares

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

# Create database tables if they don't exist
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the session manager on startup and flush pending drafts on shutdown.
    """
    logger.info("Starting Doctor Registration API...")
    app.state.session_manager = RegistrationSessionManager(
        RegistrationApiClient(),
        DatabaseDraftStore(SessionLocal),
        audit_session_factory=SessionLocal if settings.store_audit_events else None
    )
    yield
    await app.state.session_manager.shutdown()
    logger.info("Doctor Registration API stopped")


# Create FastAPI application
app = FastAPI(
    title="Doctor Registration API",
    description="API for the multi-step doctor registration workflow",
    version="1.0.0",
    lifespan=lifespan
)

# Register exception handlers
register_exception_handlers(app)

# Configure CORS middleware
origins = [settings.frontend_url]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware
setup_middlewares(app)

# Include routers
app.include_router(registration_router, prefix="/api/v1/registration", tags=["Registration"])

# Root endpoint
@app.get("/")
def root():
    """
    Root endpoint for API health check.

    Returns:
        dict: Simple welcome message
    """
    return {"message": "Welcome to Doctor Registration API"}

# Health check endpoint
@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        dict: Health status information
    """
    return {"status": "healthy", "database": "connected"}
