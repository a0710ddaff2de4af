# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""One-shot notifications carried to the next rendered page."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from secretshare.auth.session import Session, SessionManager

SEVERITIES = ("error", "success")


@dataclass(frozen=True)
class FlashMessage:
    severity: str
    message: str


def flash(manager: SessionManager, session: Session, severity: str, message: str) -> None:
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown flash severity: {severity!r}")
    manager.add_flash(session, severity, message)


def take_flashes(manager: SessionManager, session: Session) -> Dict[str, List[str]]:
    """Drain pending messages, grouped by severity (every severity key is present)."""
    out: Dict[str, List[str]] = {s: [] for s in SEVERITIES}
    for severity, message in manager.take_flash(session):
        msg = FlashMessage(severity=severity, message=message)
        out.setdefault(msg.severity, []).append(msg.message)
    return out
