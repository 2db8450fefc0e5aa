#!/usr/bin/env python3
"""
Development server for the billing API.

Usage:
    python run_api.py
    python run_api.py --port 8080 --reload
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

# Add parent directory to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the auction billing API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    args = parser.parse_args()

    print(f"Starting server on http://{args.host}:{args.port} (docs at /docs)")
    uvicorn.run(
        "api.main:app",
        app_dir=str(project_root),
        host=args.host,
        port=args.port,
        reload=args.reload,
        reload_dirs=[str(project_root)] if args.reload else None,
        log_level="info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
