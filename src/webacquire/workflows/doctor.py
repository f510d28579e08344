"""Operator diagnostics for the acquisition stack (``webacquire doctor``)."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .fetcher_config import (
    ENV_DENYLIST_HOSTS,
    ENV_HOST_PROFILES_PATH,
    ENV_PREFIX,
    ENV_RENDER_DOMAINS,
    ENV_RENDER_ENABLED,
)
from .fetcher_utils import collect_environment_warnings, env_bool

_PLAYWRIGHT_REMEDY = "Install Playwright and run `playwright install --with-deps chromium`."


@dataclass
class DoctorCheck:
    name: str
    passed: bool
    detail: Optional[str] = None
    remedy: Optional[str] = None
    # "warn" checks make the report fail; "info" checks are informational.
    level: str = "warn"

    def to_dict(self) -> Dict[str, Any]:
        entry = asdict(self)
        entry["status"] = "ok" if entry.pop("passed") else "missing"
        if not self.remedy:
            entry.pop("remedy")
        return entry


def _playwright_check() -> DoctorCheck:
    from . import browser_transport

    installed = getattr(browser_transport, "async_playwright", None) is not None
    enabled = env_bool(ENV_RENDER_ENABLED, True)
    if not enabled:
        detail = "Rendering fallback disabled by configuration"
    elif installed:
        detail = "Rendering fallback enabled"
    else:
        detail = "Rendering fallback unavailable"
    return DoctorCheck("playwright", installed or not enabled, detail=detail, remedy=_PLAYWRIGHT_REMEDY)


def _host_profiles_check(path: Optional[Path]) -> DoctorCheck:
    raw = path or os.getenv(ENV_HOST_PROFILES_PATH)
    if not raw:
        return DoctorCheck(ENV_HOST_PROFILES_PATH, True, detail="Built-in host profiles only", level="info")
    profiles = Path(raw)
    return DoctorCheck(
        ENV_HOST_PROFILES_PATH,
        profiles.exists(),
        detail=str(profiles),
        remedy=f"Create the JSON file or unset {ENV_HOST_PROFILES_PATH}.",
    )


def _list_setting_check(name: str, label: str) -> DoctorCheck:
    value = os.getenv(name, "").strip()
    detail = f"{label}: {value}" if value else f"no {label} configured"
    return DoctorCheck(name, True, detail=detail, level="info")


def build_doctor_report(*, host_profiles_path: Optional[Path] = None) -> Dict[str, Any]:
    checks: List[DoctorCheck] = [
        _playwright_check(),
        _host_profiles_check(host_profiles_path),
        _list_setting_check(ENV_RENDER_DOMAINS, "render-first hosts"),
        _list_setting_check(ENV_DENYLIST_HOSTS, "extra denylisted hosts"),
    ]
    return {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": all(check.passed for check in checks if check.level == "warn"),
        "checks": [check.to_dict() for check in checks],
        "environment_warnings": collect_environment_warnings(),
        "overrides": {
            name: value
            for name, value in sorted(os.environ.items())
            if name.startswith(ENV_PREFIX) and value.strip()
        },
    }


def format_doctor_report(report: Dict[str, Any]) -> str:
    out: List[str] = ["webacquire doctor", f"Generated: {report.get('generated_at')}", ""]
    for check in report.get("checks", []):
        status = check.get("status", "unknown")
        out.append(f"- [{check.get('level', 'info')}] {check.get('name', 'check')}: {status}")
        if check.get("detail"):
            out.append(f"  detail: {check['detail']}")
        if status != "ok" and check.get("remedy"):
            out.append(f"  remedy: {check['remedy']}")

    overrides = report.get("overrides") or {}
    if overrides:
        out += ["", "Environment overrides:"]
        out += [f"- {name}={value}" for name, value in overrides.items()]

    warnings = report.get("environment_warnings") or []
    if warnings:
        out += ["", "Environment warnings:"]
        for item in warnings:
            out.append(f"- {item.get('code', 'warning')}: {item.get('message', '')}")
            if item.get("remedy"):
                out.append(f"  remedy: {item['remedy']}")
    return "\n".join(out).rstrip() + "\n"


__all__ = ["DoctorCheck", "build_doctor_report", "format_doctor_report"]
