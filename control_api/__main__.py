"""
Run the voice API.

Usage:
    python -m control_api

Serves on http://0.0.0.0:8000 (VC_API_PORT to override) with collaborators
built from the environment.
"""
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from logging_setup import setup_logging

root = Path(__file__).parent.parent
for name in (".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    uvicorn.run(
        "control_api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("VC_API_PORT", "8000")),
        log_level="info",
    )
