"""Run metadata and per-source provenance for published artifacts."""

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from btc_risk import ETL_VERSION, MODEL_VERSION

_SECRET_PARAM_RE = re.compile(r"(api_key|apikey|key|token)=[^&]+", re.IGNORECASE)


def redact_url(url: str) -> str:
    """Mask credential query params before a URL is published."""
    return _SECRET_PARAM_RE.sub(lambda m: f"{m.group(1)}=***", url)


def utc_now_iso(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with a Z suffix, second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class SourceStatus:
    """One upstream request, as reported in status.json."""

    name: str
    ok: bool
    ms: int
    url: str
    status_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "ok": self.ok,
            "ms": self.ms,
            "url": redact_url(self.url),
        }
        if self.status_code is not None:
            out["status"] = self.status_code
        if self.error:
            out["error"] = self.error
        return out


def build_meta(artifact: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for published artifacts.

    Args:
        artifact: Name of the artifact (e.g. "latest", "status")
        duration_ms: Pipeline run time in milliseconds (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "etl_version": ETL_VERSION,
        "model_version": MODEL_VERSION,
        "artifact": artifact,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_provenance(
    source: str,
    as_of: date | datetime | str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """
    Provenance block for one upstream in status.json.

    Any field holding a failed Result dict ({"success": False, ...}) adds a
    "<field>: <message>" entry to warnings.
    """
    prov: dict[str, Any] = {
        "source": source,
        "as_of": as_of.isoformat() if isinstance(as_of, (date, datetime)) else as_of,
    }
    prov.update(fields)
    warnings = list(prov.get("warnings") or [])
    for name, value in fields.items():
        if isinstance(value, dict) and value.get("success") is False:
            warnings.append(f"{name}: {value.get('reason') or value.get('error')}")
    prov["warnings"] = warnings
    return prov
