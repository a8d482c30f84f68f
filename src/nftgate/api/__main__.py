# src/nftgate/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from nftgate.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so NFTGATE_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from nftgate.api.app import create_app
    from nftgate.api.structured_logging import configure_structured_logging

    configure_structured_logging()

    host = os.getenv("NFTGATE_API_HOST", "127.0.0.1")
    port = int(os.getenv("NFTGATE_API_PORT", "8000"))

    # Per-request events come from RequestLogMiddleware.
    uvicorn.run(create_app(), host=host, port=port, log_level="info", access_log=False)


if __name__ == "__main__":
    main()
