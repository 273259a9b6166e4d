"""
Main HTTP server for the specwatch query API.

Serves changelog, comparison, statistics and target health endpoints.
"""

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from specwatch import __version__
from specwatch.ui.changelog_api import router as changelog_router

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="specwatch API",
    description="API change monitoring: changelog, comparisons and statistics",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("API_CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(changelog_router)


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "specwatch API",
        "version": __version__,
        "endpoints": {
            "changelog": "/api/targets/{target_id}/changelog",
            "entry": "/api/changelog/{entry_id}",
            "compare": "/api/compare",
            "stats": "/api/stats",
            "health": "/api/targets/health",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Main entry point for HTTP server."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))

    logger.info("=" * 60)
    logger.info(f"specwatch {__version__} - API Server")
    logger.info("=" * 60)
    logger.info(f"Host: {host}")
    logger.info(f"Port: {port}")
    logger.info("=" * 60)
    logger.info(f"API Documentation: http://{host}:{port}/docs")
    logger.info("=" * 60)

    uvicorn.run(
        "specwatch.ui.http_server:app",
        host=host,
        port=port,
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    main()
