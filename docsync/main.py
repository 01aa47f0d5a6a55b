"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from docsync.api import router as api_router

app = FastAPI(
    title="DocSync Engine",
    description="Conversational generation of versioned, dependency-tracked analysis documents",
    version="0.1.0",
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


app.include_router(api_router, prefix="/v1", tags=["v1"])
