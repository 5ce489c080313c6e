from __future__ import annotations

import functools
from collections.abc import Callable

from django.http import JsonResponse

VOTING_CHANGE_ELECTION = "voting.change_election"
VOTING_DELETE_ELECTION = "voting.delete_election"


def json_permission_required(perm: str) -> Callable:
    """Like `permission_required`, but answers JSON instead of redirecting."""

    def decorator(view_func: Callable) -> Callable:
        @functools.wraps(view_func)
        def wrapped(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({"ok": False, "error": "Authentication required."}, status=401)
            if not request.user.has_perm(perm):
                return JsonResponse({"ok": False, "error": "Permission denied."}, status=403)
            return view_func(request, *args, **kwargs)

        return wrapped

    return decorator
