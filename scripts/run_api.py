"""
Script to serve the sync API with uvicorn
"""

import argparse
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import uvicorn
from core.config import settings


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve the Customer Success Sync Service API")
    parser.add_argument("--host", default=settings.API_HOST, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.API_PORT, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    args = parser.parse_args(argv)

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
