"""Gateway settings from a .env file.

Only the gateway's own variables (NFTGATE_*) and the AWS_* credentials the s3
backend hands to boto3 are taken from the file; anything else in it is left
out of the process environment. Variables already set always win.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

log = logging.getLogger("nftgate.env")

ENV_PREFIXES = ("NFTGATE_", "AWS_")

_LOADED = False


def gateway_env_from_file(path: Path) -> Dict[str, str]:
    """Gateway-relevant assignments in `path` (unset values dropped)."""
    values = dotenv_values(path)
    return {
        k: v
        for k, v in values.items()
        if v is not None and k.startswith(ENV_PREFIXES)
    }


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """Apply the gateway .env once per process.

    The file is `dotenv_path`, else NFTGATE_DOTENV_PATH, else ./.env. Returns
    True when a file was read on this call.
    """
    global _LOADED
    if _LOADED:
        return False
    _LOADED = True

    path = Path(dotenv_path or os.getenv("NFTGATE_DOTENV_PATH", ".env")).expanduser()
    if not path.is_file():
        return False

    applied = []
    for key, value in gateway_env_from_file(path).items():
        if key not in os.environ:
            os.environ[key] = value
            applied.append(key)
    log.debug("dotenv %s applied %s", path, sorted(applied))
    return True
