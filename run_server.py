#!/usr/bin/env python3
"""
image-trace Server - HTTP Mode

Runs the image-trace search API with uvicorn.

Usage:
    # Defaults (127.0.0.1:8780)
    python run_server.py

    # Listen on all interfaces with a custom data directory
    python run_server.py --host 0.0.0.0 --port 9000 --data-dir /var/lib/image-trace

Environment Variables:
    IMAGE_TRACE_SECRET: Server secret used to encrypt stored images and results
    IMAGE_TRACE_DATA_DIR: Records and blob directory (default: ~/.image-trace)
    IMAGE_TRACE_SCANNER_URL: Proprietary scanner base URL
    GOOGLE_VISION_API_KEY: Enables Google Vision
    TINEYE_API_KEY: Enables TinEye
    IMAGE_TRACE_HOST / IMAGE_TRACE_PORT: Bind address
"""

import argparse
import logging
import os
import sys

# Add src to path for development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from image_trace.api.server import DEFAULT_API_PORT, run_api_server

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Run the image-trace search API"
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("IMAGE_TRACE_HOST", "127.0.0.1"),
        help="Server host (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("IMAGE_TRACE_PORT", str(DEFAULT_API_PORT))),
        help=f"Server port (default: {DEFAULT_API_PORT})"
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override IMAGE_TRACE_DATA_DIR"
    )
    parser.add_argument(
        "--entitlements",
        default=None,
        help="YAML file overriding the plan entitlement table"
    )

    args = parser.parse_args()

    # Settings are read from the environment at startup
    if args.data_dir:
        os.environ["IMAGE_TRACE_DATA_DIR"] = args.data_dir
    if args.entitlements:
        os.environ["IMAGE_TRACE_ENTITLEMENTS"] = args.entitlements

    logger.info(f"Starting image-trace on http://{args.host}:{args.port}")
    logger.info(f"Health check: http://{args.host}:{args.port}/health")

    run_api_server(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
