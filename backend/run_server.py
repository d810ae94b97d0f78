#!/usr/bin/env python3
"""
Launch script for the racelog backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST]

Examples:
    python run_server.py                    # Use default ./data/runs folder
    python run_server.py /path/to/logs      # Use custom folder
    python run_server.py --port 5000        # Run on port 5000
"""

import argparse
import os
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))


def main():
    parser = argparse.ArgumentParser(description="racelog backend server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default=os.getenv("RACELOG_DATA_FOLDER", "./data/runs"),
        help="Path to folder containing log files (default: ./data/runs)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8000,
        help="Port to run server on (default: 8000)"
    )
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--tracks", "-t",
        default=None,
        help="Track catalog JSON file (default: packaged tracks.json)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Run in debug mode"
    )

    args = parser.parse_args()

    data_folder = Path(args.data_folder)

    print("racelog backend")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Server: http://{args.host}:{args.port}")
    print("=" * 40)

    if not data_folder.exists():
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("You can set it later via POST /folder")

    # Read by racelog at import time
    os.environ["RACELOG_DATA_FOLDER"] = str(data_folder)
    if args.tracks:
        os.environ["RACELOG_TRACKS_FILE"] = str(Path(args.tracks).absolute())

    print("\nAPI Endpoints:")
    print("  GET  /                        - Health check")
    print("  GET  /health                  - Detailed health")
    print("  GET  /folder                  - Current folder info")
    print("  POST /folder                  - Set data folder")
    print("  GET  /runs                    - List all runs")
    print("  POST /runs/upload?name=       - Decode an uploaded log")
    print("  GET  /runs/{id}               - Get run metadata")
    print("  GET  /runs/{id}/data          - Get full run data")
    print("  GET  /runs/{id}/playback      - Get playback data")
    print("  GET  /runs/{id}/laps          - Lap and sector times")
    print("  GET  /runs/{id}/speed-events  - Speed peaks and valleys")
    print("  GET  /tracks                  - Track catalog")
    print("\nStarting server...")

    import uvicorn

    uvicorn.run(
        "racelog.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
