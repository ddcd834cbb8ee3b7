#!/usr/bin/env python3
"""
Launch script for the trip tracking API.

Usage:
    python scripts/run_server.py              # Production
    python scripts/run_server.py --dev        # Development (hot reload)
    python scripts/run_server.py --port 8080  # Custom port
"""

import argparse
import os
import sys
from pathlib import Path

import uvicorn

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Ensure project root is on PYTHONPATH
sys.path.insert(0, str(PROJECT_ROOT))
os.chdir(PROJECT_ROOT)


def main():
    parser = argparse.ArgumentParser(description="Trip Tracking API")
    parser.add_argument("--dev", action="store_true", help="Run in dev mode with hot reload")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    args = parser.parse_args()

    print(f"Starting Trip Tracking API{' (development)' if args.dev else ''}...")
    print(f"  URL: http://{args.host}:{args.port}")
    print()

    uvicorn.run(
        "tripcore.api.main:app",
        host=args.host,
        port=args.port,
        log_level="info",
        reload=args.dev,
        reload_dirs=[str(PROJECT_ROOT / "tripcore")] if args.dev else None,
    )


if __name__ == "__main__":
    main()
