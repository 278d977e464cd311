#!/usr/bin/env python3
"""
Script to run the Book Review API server.
"""

import uvicorn

from api.config import config as api_config
from utilities.config import config


def main():
    """Run the API server."""
    print("Starting Book Review API Server")
    print(f"Host: {api_config.host}")
    print(f"Port: {api_config.port}")
    print(f"Debug: {api_config.debug}")
    print(f"Database: {config.mongodb_database}")
    print("=" * 50)

    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
