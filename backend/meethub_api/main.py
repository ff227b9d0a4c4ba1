from __future__ import annotations

from dotenv import load_dotenv
from pathlib import Path

from .config import load_settings
from .app_factory import create_app
from .logging_utils import configure_logging


_REPO_ROOT = Path(__file__).resolve().parents[2]
# Repo `.env` wins over already-exported shell vars during local dev.
load_dotenv(dotenv_path=_REPO_ROOT / ".env", override=True)
settings = load_settings()
configure_logging(settings.log_level)

app = create_app(settings)
