"""
🔐 CipherDocs API - Encrypted document store
Durable storage for end-to-end encrypted documents

Features:
- Zero-knowledge storage of wrapped keys and ciphertext
- Searchable encryption: exact-match metadata filters, vector ranking
- Progress tracking for client-side processing jobs
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
import logging

from cipherdocs.api.routes import keys, documents, processing
from cipherdocs.core.config import settings
from cipherdocs.db.database import engine, Base, SessionLocal
from cipherdocs.db.job_repo import ProcessingJobRepository

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def cleanup_stale_jobs() -> int:
    db = SessionLocal()
    try:
        return ProcessingJobRepository(db).cleanup_stale(settings.PROGRESS_RETENTION_MINUTES)
    finally:
        db.close()


# Background task for job cleanup
async def cleanup_stale_jobs_loop():
    """Periodically delete progress entries nobody has updated recently"""
    while True:
        try:
            removed = cleanup_stale_jobs()
            if removed > 0:
                logger.info(f"🧹 Cleaned up {removed} stale processing jobs")
        except Exception as e:
            logger.error(f"❌ Error in job cleanup: {e}")

        # Run every minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle events"""
    # Startup
    logger.info("🚀 Starting CipherDocs API...")
    logger.info(f"🔧 Environment: {settings.ENVIRONMENT}")
    logger.info(f"🗄️  Database: {settings.DATABASE_URL.split('://')[0]}")

    Base.metadata.create_all(bind=engine)
    logger.info("📊 Database tables created/verified")

    cleanup_task = asyncio.create_task(cleanup_stale_jobs_loop())
    logger.info("⚙️  Background tasks started")

    yield

    # Shutdown
    logger.info("🛑 Shutting down CipherDocs API...")
    cleanup_task.cancel()
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    🔐 **CipherDocs** - Encrypted documents you can still search.

    - Documents are chunked, embedded and encrypted on the client
    - The server stores wrapped keys and ciphertext only
    - Deterministic metadata encryption allows exact-match filters
    - Distance-preserving vector encryption allows similarity search
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=600,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.ENVIRONMENT != "production" else "An error occurred"
        }
    )


# Include routers
app.include_router(keys.router, prefix=f"{settings.API_PREFIX}/keys", tags=["Key Management"])
app.include_router(documents.router, prefix=f"{settings.API_PREFIX}/documents", tags=["Documents"])
app.include_router(documents.search_router, prefix=f"{settings.API_PREFIX}/search", tags=["Search"])
app.include_router(processing.router, prefix=f"{settings.API_PREFIX}/processing", tags=["Processing"])


@app.get("/", tags=["Status"])
async def root():
    """API root - status check"""
    return {
        "name": settings.PROJECT_NAME,
        "status": "running",
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Status"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "database": "connected",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/api/security-info", tags=["Status"])
async def security_info():
    """Public security information"""
    return {
        "encryption": {
            "key_derivation": "PBKDF2-HMAC-SHA256 (100,000 iterations)",
            "key_wrapping": "AES-256-GCM",
            "content": "AES-256-GCM",
            "metadata": "AES-SIV (deterministic)",
            "vectors": "Scaled orthogonal transform (distance preserving)",
        },
        "features": {
            "zero_knowledge": True,
            "recovery_key": True,
            "searchable_metadata": True,
            "vector_search": True,
        },
        "server_stores": [
            "Wrapped master keys",
            "Encrypted search key material",
            "Encrypted documents, chunks and vectors",
        ],
        "server_never_sees": [
            "Passwords or recovery keys",
            "Master keys",
            "Plaintext documents",
        ]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "cipherdocs.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level="info"
    )
