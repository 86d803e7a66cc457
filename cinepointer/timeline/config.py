from __future__ import annotations


class tcfg:
    """Timeline store tuning"""

    # --- Canonical header ---
    CANVAS = "web"  # only capture surface this package records

    # --- Durable (NDJSON) log ---
    DURABLE_WRITE_RETRIES = 3  # attempts per line before it goes to the backlog
    DURABLE_RETRY_DELAY_S = 0.05
    LOG_ENCODING = "utf-8"

    # Header sidecar: events.ndjson -> events.meta.json
    MANIFEST_SUFFIX = ".meta.json"
