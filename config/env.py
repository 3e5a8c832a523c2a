"""Environment file loading."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from config.settings import Settings


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Read ``env_file`` (or the nearest ``.env``) and return fresh settings.

    Variables already present in the process environment win over the file.
    """

    path = str(env_file) if env_file else find_dotenv(usecwd=True)
    if path:
        load_dotenv(path, override=False)
    return Settings()
