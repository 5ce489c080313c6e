from __future__ import annotations

from dataclasses import dataclass

from django.http import HttpRequest


@dataclass(frozen=True)
class StationContext:
    """Who is operating which voting station, passed explicitly to services."""

    operator: str = ""
    station_id: str = ""
    ip_address: str = ""
    user_agent: str = ""

    @classmethod
    def from_request(cls, request: HttpRequest) -> StationContext:
        user = getattr(request, "user", None)
        operator = ""
        if user is not None and user.is_authenticated:
            operator = str(user.get_username() or "")

        forwarded_for = str(request.META.get("HTTP_X_FORWARDED_FOR") or "")
        ip_address = forwarded_for.split(",")[0].strip() or str(request.META.get("REMOTE_ADDR") or "")

        return cls(
            operator=operator,
            station_id=str(request.headers.get("X-Voting-Station") or "").strip()[:64],
            ip_address=ip_address[:45],
            user_agent=str(request.META.get("HTTP_USER_AGENT") or "")[:200],
        )
