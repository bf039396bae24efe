"""freevox: relay between browser voice clients and the OpenAI Realtime API."""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

__version__ = "0.1.0"

_SERVER_DIR = Path(__file__).resolve().parent.parent

# Repo root first, then the server dir; .env.local wins over both.
for _env_dir in (_SERVER_DIR.parent, _SERVER_DIR):
    load_dotenv(_env_dir / ".env")
for _env_dir in (_SERVER_DIR.parent, _SERVER_DIR):
    load_dotenv(_env_dir / ".env.local", override=True)
