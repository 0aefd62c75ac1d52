from __future__ import annotations

from pathlib import Path
from typing import Dict

from dotenv import dotenv_values, load_dotenv


def load_env(path: str | Path, override: bool = False) -> Dict[str, str]:
    """
    Load KEY=VALUE pairs from a .env file into os.environ.

    Existing environment variables win unless override is set.
    Returns a dict of the keys found in the file.
    """
    p = Path(path)
    if not p.exists():
        return {}
    load_dotenv(p, override=override)
    return {k: v for k, v in dotenv_values(p).items() if v is not None}
