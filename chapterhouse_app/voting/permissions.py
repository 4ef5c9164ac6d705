from collections.abc import Callable, Collection
from functools import wraps
from typing import ParamSpec, TypeVar

from django.http import HttpRequest, HttpResponse, JsonResponse

VOTING_ADD_VOTINGLINK = "voting.add_votinglink"
VOTING_CHANGE_VOTINGLINK = "voting.change_votinglink"
VOTING_CHANGE_ELECTION = "voting.change_election"
VOTING_VIEW_VOTE = "voting.view_vote"
VOTING_CHANGE_VOTE = "voting.change_vote"

ELECTION_ADMIN_PERMISSIONS: frozenset[str] = frozenset(
    {
        VOTING_ADD_VOTINGLINK,
        VOTING_CHANGE_ELECTION,
    }
)


P = ParamSpec("P")
R = TypeVar("R", bound=HttpResponse)


def json_permission_required(permission: str) -> Callable[[Callable[P, R]], Callable[P, HttpResponse]]:
    """Decorator for JSON endpoints that require a single Django permission.

    Anonymous callers get a JSON 401 and authenticated callers without the
    permission a JSON 403, instead of a login redirect.
    """
    return json_permission_required_any({permission})


def json_permission_required_any(permissions: Collection[str]) -> Callable[[Callable[P, R]], Callable[P, HttpResponse]]:
    perms = tuple(permissions)
    if not perms:
        raise ValueError("permissions must not be empty")

    def decorator(view_func: Callable[P, R]) -> Callable[P, HttpResponse]:
        @wraps(view_func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> HttpResponse:
            request = args[0] if args else None
            if not isinstance(request, HttpRequest):
                return JsonResponse({"ok": False, "error": "Permission denied.", "code": "forbidden"}, status=403)

            user = request.user
            if not user.is_authenticated:
                return JsonResponse(
                    {"ok": False, "error": "Authentication required.", "code": "unauthenticated"},
                    status=401,
                )

            if not any(user.has_perm(perm) for perm in perms):
                return JsonResponse({"ok": False, "error": "Permission denied.", "code": "forbidden"}, status=403)

            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def can_view_results(*, user: object, public_results: bool) -> bool:
    if public_results:
        return True
    try:
        return bool(user.has_perm(VOTING_VIEW_VOTE))
    except AttributeError:
        return False
