"""Pacing Engine — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info")


def main():
    parser = argparse.ArgumentParser(description="Pacing Engine dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean and create demo session data")
    parser.add_argument("--mcp", action="store_true",
                        help="Run the MCP server on stdio instead of the API")
    args = parser.parse_args()

    # Handle --demo: init storage and populate, then continue to the server
    if args.demo or args.data_dir:
        from backend import storage
        data_dir = args.data_dir or Path("data")
        storage.init_storage(data_dir)
        if args.demo:
            from backend.demo import create_demo_data
            create_demo_data()

    # Build env for the subprocess so the server picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    if args.mcp:
        cmd = ["uv", "run", "python", "-m", "backend.mcp_server"]
    else:
        cmd = ["uv", "run", "uvicorn", "backend.app:app", "--reload",
               "--host", HOST, "--port", BACKEND_PORT, "--log-level", LOG_LEVEL]

    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)

    def shutdown(*_):
        print("\nShutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    if not args.mcp:
        print(f"Starting API on http://localhost:{BACKEND_PORT} ...")
    proc.wait()


if __name__ == "__main__":
    main()
