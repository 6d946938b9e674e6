#!/usr/bin/env python3
"""
Run the submission API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from clubmap.core.config import debug_enabled


def main():
    parser = argparse.ArgumentParser(description="Serve the ClubMap submission API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    uvicorn.run(
        "clubmap.api.main:app",
        host=args.host,
        port=args.port,
        reload=debug_enabled(),
    )


if __name__ == "__main__":
    main()
