#!/usr/bin/env python3
"""
TileMachine MCP Server - Entry Point

This module provides the async MCP server for custom-script raster
rendering over local, S3 and HTTP raster sources.
Supports both stdio (for Claude Desktop) and HTTP (for API access) transports.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .constants import EnvVar, ServerConfig, SessionProvider, StorageProvider

# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logger = logging.getLogger(__name__)


def _resolve_storage_provider() -> str | None:
    """
    Pick the artifact storage provider from environment variables.

    Returns:
        Provider name, or None if the configured provider cannot be used
    """
    provider = os.environ.get(EnvVar.ARTIFACTS_PROVIDER, StorageProvider.MEMORY)

    if provider == StorageProvider.S3:
        missing = [
            var
            for var in (EnvVar.BUCKET_NAME, EnvVar.AWS_ACCESS_KEY_ID, EnvVar.AWS_SECRET_ACCESS_KEY)
            if not os.environ.get(var)
        ]
        if missing:
            logger.warning(
                f"S3 provider configured but missing credentials. Set {', '.join(missing)}."
            )
            return None
        logger.info(
            f"Using S3 artifact storage (bucket: {os.environ.get(EnvVar.BUCKET_NAME)}, "
            f"endpoint: {os.environ.get(EnvVar.AWS_ENDPOINT_URL_S3)})"
        )

    elif provider == StorageProvider.FILESYSTEM:
        artifacts_path = os.environ.get(EnvVar.ARTIFACTS_PATH)
        if not artifacts_path:
            logger.warning(
                f"Filesystem provider configured but {EnvVar.ARTIFACTS_PATH} not set. "
                "Defaulting to memory provider."
            )
            return StorageProvider.MEMORY
        Path(artifacts_path).mkdir(parents=True, exist_ok=True)
        logger.info(f"Using filesystem artifact storage (path: {artifacts_path})")

    return provider


def _init_artifact_store() -> bool:
    """
    Initialize the artifact store from environment variables.

    Returns:
        True if artifact store was initialized, False otherwise
    """
    provider = _resolve_storage_provider()
    if provider is None:
        return False

    redis_url = os.environ.get(EnvVar.REDIS_URL)
    logger.info(f"Session store: {'redis' if redis_url else 'memory'}")

    try:
        from chuk_artifacts import ArtifactStore
        from chuk_mcp_server import set_global_artifact_store

        store_kwargs: dict[str, Any] = {
            "storage_provider": provider,
            "session_provider": SessionProvider.REDIS if redis_url else SessionProvider.MEMORY,
        }

        if provider == StorageProvider.S3:
            store_kwargs["bucket"] = os.environ.get(EnvVar.BUCKET_NAME)
        elif provider == StorageProvider.FILESYSTEM:
            store_kwargs["bucket"] = os.environ.get(EnvVar.ARTIFACTS_PATH)

        store = ArtifactStore(**store_kwargs)
        set_global_artifact_store(store)

        logger.info(f"Artifact store initialized successfully (provider: {provider})")
        return True

    except Exception as e:
        logger.error(f"Failed to initialize artifact store: {e}")
        return False


# Import mcp instance, manager and all registered tools from async server
from .async_server import manager, mcp  # noqa: E402


def main() -> None:
    """Main entry point for the MCP server."""
    import argparse

    # Initialize artifact store at startup, not at import time
    _init_artifact_store()

    parser = argparse.ArgumentParser(description=ServerConfig.DESCRIPTION)
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["stdio", "http"],
        default=None,
        help="Transport mode (stdio for Claude Desktop, http for API)",
    )
    parser.add_argument(
        "--host", default="localhost", help="Host for HTTP mode (default: localhost)"
    )
    parser.add_argument("--port", type=int, default=8004, help="Port for HTTP mode (default: 8004)")
    parser.add_argument(
        "--raster-root",
        default=None,
        help=f"Base directory for bare source paths (overrides {EnvVar.RASTER_ROOT})",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help=f"Render thread pool size (overrides {EnvVar.MAX_WORKERS})",
    )

    args = parser.parse_args()

    if args.raster_root:
        manager.raster_root = args.raster_root
    if args.max_workers and args.max_workers > 0:
        manager.max_workers = args.max_workers
    logger.info(
        f"Raster root: {manager.raster_root or '(not set)'}, render workers: {manager.max_workers}"
    )

    stdio = args.mode == "stdio" or (
        args.mode is None and (os.environ.get(EnvVar.MCP_STDIO) or not sys.stdin.isatty())
    )
    if stdio:
        detected = "" if args.mode else " (auto-detected)"
        print(f"TileMachine MCP Server starting in STDIO mode{detected}", file=sys.stderr)
        mcp.run(stdio=True)
    else:
        print(
            f"TileMachine MCP Server starting in HTTP mode on {args.host}:{args.port}",
            file=sys.stderr,
        )
        mcp.run(host=args.host, port=args.port, stdio=False)


if __name__ == "__main__":
    main()
