from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging with one stdout handler.

    basicConfig leaves an already configured root logger alone (e.g. under
    uvicorn or pytest), so only the package's own level is forced.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s:     %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("task_api").setLevel(getattr(logging, level.upper(), logging.INFO))
