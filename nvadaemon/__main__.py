#!/usr/bin/env python3
"""
nvadaemon CLI Entry Point

Allows running the daemon as a module: python -m nvadaemon --config nvadaemon.yaml
"""

from __future__ import annotations

import asyncio
import sys

from nvadaemon.core.service import main as nvadaemon_main


def run() -> None:
    try:
        sys.exit(asyncio.run(nvadaemon_main()))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e.__class__.__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
