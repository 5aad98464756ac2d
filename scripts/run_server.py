#!/usr/bin/env python3
"""
Run the review room API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from reviewroom.core.config import validate_config
from reviewroom.core.db import init_db


def main():
    parser = argparse.ArgumentParser(description="Run the PRD review room API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    args = parser.parse_args()

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"❌ {issue}")
        sys.exit(1)

    init_db()

    import uvicorn
    uvicorn.run("reviewroom.api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
