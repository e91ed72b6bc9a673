"""Session discovery from hook reports.

Two shapes are understood:
- a raw Claude Code hook payload: ``{"session_id": ..., "cwd": ..., ...}``
- a rendered notification embed: ``{"fields": [{"name": "Session", "value": "`abc...`"}, ...]}``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


_BACKTICK = re.compile(r"`([^`]+)`")
_RESUME = re.compile(r"--resume\s+([A-Za-z0-9-]+)")


@dataclass(frozen=True)
class SessionReport:
    session_id: str
    working_directory: str
    branch_label: str | None = None
    project_label: str | None = None


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _from_hook_payload(data: dict[str, Any]) -> SessionReport | None:
    session_id = _str_or_none(data.get("session_id") or data.get("sessionId"))
    cwd = _str_or_none(data.get("cwd") or data.get("working_directory"))
    if not session_id or not cwd:
        return None
    return SessionReport(
        session_id=session_id,
        working_directory=cwd,
        branch_label=_str_or_none(data.get("branch")),
        project_label=_str_or_none(data.get("project")),
    )


def _from_embed(fields: list[Any]) -> SessionReport | None:
    found: dict[str, str] = {}
    resume_id: str | None = None

    for f in fields:
        if not isinstance(f, dict):
            continue
        name = str(f.get("name") or "")
        value = str(f.get("value") or "")
        if "Resume" in name:
            m = _RESUME.search(value)
            if m:
                resume_id = m.group(1)
            continue
        m = _BACKTICK.search(value)
        if not m:
            continue
        for key in ("Session", "Directory", "Branch", "Project"):
            if key in name:
                found[key] = m.group(1)

    session_id = resume_id or (found.get("Session", "").replace("...", "") or None)
    cwd = found.get("Directory")
    if not session_id or not cwd:
        return None
    return SessionReport(
        session_id=session_id,
        working_directory=cwd,
        branch_label=found.get("Branch"),
        project_label=found.get("Project"),
    )


def parse_session_report(data: Any) -> SessionReport | None:
    """Parse a report; None when it lacks a session id or working directory."""
    if not isinstance(data, dict):
        return None
    fields = data.get("fields")
    if isinstance(fields, list):
        return _from_embed(fields)
    embeds = data.get("embeds")
    if isinstance(embeds, list):
        for embed in embeds:
            if isinstance(embed, dict) and isinstance(embed.get("fields"), list):
                report = _from_embed(embed["fields"])
                if report is not None:
                    return report
        return None
    return _from_hook_payload(data)
