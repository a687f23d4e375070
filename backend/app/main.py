"""FastAPI application entry point."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.database import async_session_maker
from app.routes import accuracy, audit, fhir, hl7, mpi, phi, readmission, sdoh, x12
from app.services.hl7_parser import generate_nak
from app.services.hl7_receiver import HL7ReceiverService
from app.services.mllp import MLLPServer

logger = logging.getLogger(__name__)


async def handle_mllp_message(raw: str) -> str:
    """Process one MLLP message in its own session and return the ACK."""
    try:
        tenant_id = uuid.UUID(settings.hl7_default_tenant_id)
    except ValueError:
        logger.error("MLLP message rejected: HL7_DEFAULT_TENANT_ID is not a valid UUID")
        return generate_nak("AR", "Receiver is not configured for a tenant")

    async with async_session_maker() as session:
        try:
            result = await HL7ReceiverService(session, tenant_id).receive(raw, source="mllp")
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("MLLP message processing failed")
            return generate_nak("AE", "Internal processing error")
    return result.ack


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events for startup/shutdown."""
    server: MLLPServer | None = None
    if settings.hl7_mllp_enabled:
        server = MLLPServer(handle_mllp_message, host=settings.hl7_mllp_host, port=settings.hl7_mllp_port)
        await server.start()
    else:
        logger.info("MLLP listener disabled")

    yield  # Application runs here

    if server is not None:
        await server.stop()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # PHI must never be cached by intermediaries
        response.headers["Cache-Control"] = "no-store"
        return response


app = FastAPI(
    title="WellFit Interop",
    description="Healthcare interoperability backend: HL7 v2, X12 997, FHIR R4, MPI and clinical AI",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)

_cors_origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["X-API-Key", "X-Tenant-ID", "X-Actor", "X-Scopes", "Content-Type"],
)

app.include_router(hl7.router, prefix="/api")
app.include_router(x12.router, prefix="/api")
app.include_router(phi.router, prefix="/api")
app.include_router(mpi.router, prefix="/api")
app.include_router(readmission.router, prefix="/api")
app.include_router(sdoh.router, prefix="/api")
app.include_router(accuracy.router, prefix="/api")
app.include_router(fhir.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root() -> dict:
    """Root endpoint with API info."""
    return {
        "name": "WellFit Interop API",
        "version": "0.1.0",
        "docs": "/docs",
    }
