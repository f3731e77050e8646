#!/usr/bin/env python3
"""Main entry point for the Imaging Intake service."""

import logging
import sys
from pathlib import Path

import uvicorn

from src.config import settings


def configure_logging():
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def run_server():
    """Run the FastAPI server."""
    logger.info(f"Starting Imaging Intake on {settings.api_host}:{settings.api_port}")
    logger.info(f"Content store directory: {settings.storage_dir}")
    logger.info("HTTP API available at: /api/v1")
    if settings.mcp_enabled:
        logger.info("MCP endpoint available at: /llm/mcp")
    logger.info("API Documentation available at: /api/v1/docs")

    uvicorn.run(
        "src.server:final_app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Imaging Intake")
    parser.add_argument(
        "--host",
        default=settings.api_host,
        help=f"Server host (default: {settings.api_host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.api_port,
        help=f"Server port (default: {settings.api_port})"
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not start the background polling loop"
    )

    args = parser.parse_args()
    configure_logging()

    # Update settings if provided
    if args.host:
        settings.api_host = args.host
    if args.port:
        settings.api_port = args.port
    if args.no_scheduler:
        settings.scheduler_enabled = False

    try:
        run_server()
    except KeyboardInterrupt:
        logger.info("Shutting down Imaging Intake...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
