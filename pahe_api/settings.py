# -*- coding: utf-8 -*-
"""
settings.py
Runtime configuration, read once from the environment.
Every value has a default so the service starts with an empty environment.
"""
import os
import shlex
import tempfile


def _float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


# ====== CATALOG ======
PAHE_BASE_URL = (os.environ.get("PAHE_BASE_URL") or "https://animepahe.si").rstrip("/")
FETCH_TIMEOUT = _float("FETCH_TIMEOUT", 30.0)
KWIK_TIMEOUT = _float("KWIK_TIMEOUT", 20.0)

# ====== RELAY ======
RELAY_TIMEOUT = _float("RELAY_TIMEOUT", 30.0)
RELAY_MAX_REDIRECTS = _int("RELAY_MAX_REDIRECTS", 5)
PROXY_PREFIX = os.environ.get("PROXY_PREFIX", "/proxy")

# ====== SANDBOX ======
NODE_COMMAND = os.environ.get("NODE_COMMAND", "node")
SANDBOX_NODE_FLAGS = shlex.split(os.environ.get("SANDBOX_NODE_FLAGS", "--max-old-space-size=64 --permission"))
SANDBOX_TIMEOUT = _float("SANDBOX_TIMEOUT", 10.0)
SANDBOX_TMP_DIR = os.environ.get("SANDBOX_TMP_DIR") or tempfile.gettempdir()

# ====== SERVER ======
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _int("PORT", 3000)
