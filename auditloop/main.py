"""FastAPI application entrypoint: read-only status of the audit store. Only wiring."""

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI

from auditloop.api.v1 import router as v1_router

API_V1_PREFIX = "/api/v1"

app = FastAPI(
    title="Auditloop API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(v1_router, prefix=API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Auditloop API"}
