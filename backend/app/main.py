"""
BlueCarbon Ledger - FastAPI Application

Main entry point for the blue-carbon credit registry backend.

Architecture:
- Upload → Scoring Oracle → Submission (initial status)
- Submission → human review transitions → Registry Gate check
- NGO_APPROVED → final confirmation + mint (one unit of work) → CreditRecord
- CreditRecord → purchase (compare-and-swap) → buyer ownership
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import EVIDENCE_DIR, LOG_LEVEL
from .database import init_db
from .routers import auth_router, submissions_router, credits_router, admin_router
from .services.registry.errors import (
    RegistryError, ValidationError, NotFoundError, AuthorizationError,
    StateConflictError, RegistryPausedError, UpstreamUnavailable,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (RegistryPausedError, 423),
    (StateConflictError, 409),
    (ValidationError, 422),
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (UpstreamUnavailable, 503),
]


def status_for(error: RegistryError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="BlueCarbon Ledger",
    description="""
    BlueCarbon Ledger - Blue-Carbon Credit Registry

    Community members upload geotagged photos of mangrove and seagrass
    restoration. An automated oracle scores each photo, NGO reviewers and
    registry admins move the submission through its lifecycle, and approved
    submissions mint tradeable carbon credits that corporate buyers purchase.

    ## Lifecycle
    1. **Ingestion**: photo + coordinates → oracle score → AI_VERIFIED or PENDING
    2. **Review**: triage, field check, NGO approval or rejection
    3. **Confirmation**: admin confirms NGO_APPROVED → APPROVED and mints the credit
    4. **Settlement**: buyer purchases an AVAILABLE credit → SOLD

    ## Key Principles
    - Every transition is checked against one authorization table
    - Every applied transition appends exactly one audit entry
    - Confirmation and minting succeed or fail together
    - A credit is sold at most once, even under concurrent purchases
    - The registry can be paused; paused issuance fails with 423
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    """Typed registry failures become JSON errors; nothing here is fatal."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.message})


# Include routers
app.include_router(auth_router)
app.include_router(submissions_router)
app.include_router(credits_router)
app.include_router(admin_router)

# Uploaded field evidence
app.mount("/evidence", StaticFiles(directory=EVIDENCE_DIR, check_dir=False), name="evidence")


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "BlueCarbon Ledger",
        "version": "1.0.0",
        "description": "Blue-Carbon Credit Registry",
        "docs": "/docs",
        "lifecycle": {
            "ingestion": "Photo + coordinates scored by the oracle",
            "review": "NGO and admin transitions, one audit entry each",
            "issuance": "Final confirmation mints one credit per submission",
            "settlement": "Corporate buyers purchase AVAILABLE credits"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
