# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


def fetch_random_secret(url: str, *, timeout: float = 5.0) -> Optional[str]:
    """Fetch one random secret from the public API; None when unavailable."""
    if not url:
        return None
    try:
        r = requests.get(url, timeout=timeout)
        r.raise_for_status()
        data = r.json()
    except (requests.RequestException, ValueError):
        logger.warning("Random secret API unavailable (%s)", url, exc_info=True)
        return None
    secret = (data or {}).get("secret") if isinstance(data, dict) else None
    secret = str(secret or "").strip()
    return secret or None
