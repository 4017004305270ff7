#!/usr/bin/env python3
"""
Server entry point for stepcoin.

Host, port and reload are read from STEPCOIN_HOST / STEPCOIN_PORT /
STEPCOIN_RELOAD so the same command works locally and in containers.
"""
import os
import sys

import uvicorn


def main() -> int:
    host = os.getenv("STEPCOIN_HOST", "0.0.0.0")
    port = int(os.getenv("STEPCOIN_PORT", "8000"))
    reload = os.getenv("STEPCOIN_RELOAD", "false").lower() in ("1", "true", "yes")

    print(f"[stepcoin] Serving on http://{host}:{port}")
    try:
        uvicorn.run(
            "stepcoin.main:app",
            host=host,
            port=port,
            reload=reload,
            log_level="info",
            access_log=False,
        )
    except KeyboardInterrupt:
        print("\n[stepcoin] Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
