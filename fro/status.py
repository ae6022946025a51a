from __future__ import annotations

from typing import Any


def project_url(route: dict[str, Any] | None) -> str:
    """Derive ``status.url`` from a Route.

    Only a route admitted under exactly one non-empty host yields a URL.
    """
    if not route:
        return ""
    ingress = (route.get("status") or {}).get("ingress") or []
    if len(ingress) != 1:
        return ""
    host = ingress[0].get("host") or ""
    if not host:
        return ""
    return f"http://{host}"
