#!/usr/bin/env python3
"""
Manual RAG - Main Application Entry Point

Serves the HTTP API, or initializes the database, from a single launcher.
"""

import argparse
import logging
import os

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

# Load environment variables
load_dotenv()

from manual_rag.config.processor import processor_config
from manual_rag.routers import api_router
from manual_rag.utils.logging_config import LOG_FORMAT, quiet_third_party_loggers

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
quiet_third_party_loggers()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Manual RAG",
    description="Question answering over uploaded technical manuals, with diagrams",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS middleware for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    """Basic service information."""
    return {
        "app": "Manual RAG",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint for container monitoring."""
    return {"status": "healthy"}

app.include_router(api_router, prefix="/api/v1")

# Stored images are referenced by URL in chat answers
_asset_dir = processor_config.storage_config.asset_dir
os.makedirs(_asset_dir, exist_ok=True)
app.mount(
    processor_config.storage_config.asset_base_url,
    StaticFiles(directory=_asset_dir),
    name="assets",
)

def main():
    """Parse command line arguments and run the appropriate component."""
    parser = argparse.ArgumentParser(description="Manual RAG")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    api_parser = subparsers.add_parser("api", help="Start the API server")
    api_parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind the server to"
    )
    api_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind the server to"
    )

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop and recreate all tables (warning: deletes existing data)"
    )

    args = parser.parse_args()

    if args.command == "api":
        uvicorn.run(app, host=args.host, port=args.port)
    elif args.command == "init-db":
        import asyncio
        from manual_rag.config.database import db_config
        from manual_rag.services.database import create_async_db_engine, initialize_database

        async def init_db():
            engine = create_async_db_engine(db_config)
            try:
                await initialize_database(engine, drop_all=args.drop, lists=db_config.ivfflat_lists)
            finally:
                await engine.dispose()

        asyncio.run(init_db())
        logger.info("Database initialized")
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
