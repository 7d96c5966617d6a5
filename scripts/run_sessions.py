"""Runs the session lifecycle manager with repository-relative imports."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from wasessions.bootstrap import serve_forever  # type: ignore
    from wasessions.config import get_settings  # type: ignore

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(serve_forever())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted")


if __name__ == "__main__":
    main()
