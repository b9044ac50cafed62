from __future__ import annotations

import os


def log_level() -> str:
    v = (os.getenv("GEOTILER_LOG_LEVEL") or "INFO").strip().upper()
    return v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"


def log_json() -> bool:
    v = (os.getenv("GEOTILER_LOG_JSON") or "0").strip().lower()
    return v not in {"0", "false", "no", "off", ""}
