"""Administrative election endpoints: results, voting links, lifecycle, invalidation."""

from collections.abc import Callable

from django.conf import settings
from django.core.paginator import Paginator
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from voting.elections_services import (
    approve_election,
    cancel_election,
    close_election,
    invalidate_vote,
    record_results_view,
    start_election,
)
from voting.exceptions import ElectionNotFoundError, VotingError
from voting.models import Election, Vote, VotingLink
from voting.permissions import (
    ELECTION_ADMIN_PERMISSIONS,
    VOTING_ADD_VOTINGLINK,
    VOTING_CHANGE_ELECTION,
    VOTING_CHANGE_VOTE,
    VOTING_CHANGE_VOTINGLINK,
    VOTING_VIEW_VOTE,
    can_view_results,
    json_permission_required,
    json_permission_required_any,
)
from voting.results_cache import get_cached_election_results
from voting.results_export import export_election_results
from voting.views_utils import (
    RequestPayloadError,
    _normalize_str,
    client_ip,
    client_user_agent,
    parse_json_body,
    voting_error_response,
)
from voting.views_voting import serialize_vote
from voting.voting_links import generate_voting_links, list_voting_links, revoke_voting_link
from voting.voting_log import AuditActor

_LIFECYCLE_ACTIONS: dict[str, Callable[..., Election]] = {
    "approve": approve_election,
    "start": start_election,
    "close": close_election,
}


def _request_actor(request: HttpRequest) -> AuditActor:
    if request.user.is_authenticated:
        return AuditActor.for_user(request.user)
    return AuditActor(id="anonymous", role="member")


def _load_election(election_id: int) -> Election:
    election = Election.objects.filter(pk=election_id).first()
    if election is None:
        raise ElectionNotFoundError()
    return election


def _serialize_link(link: VotingLink) -> dict[str, object]:
    def _iso(value: object) -> str | None:
        return value.isoformat() if value is not None else None

    return {
        "id": link.pk,
        "memberId": link.member_id,
        "memberEmail": link.member_email,
        "memberName": link.member.full_name,
        "status": link.status,
        "expiresAt": _iso(link.expires_at),
        "emailSent": link.email_sent,
        "emailSentAt": _iso(link.email_sent_at),
        "accessCount": link.access_count,
        "accessedAt": _iso(link.accessed_at),
        "usedAt": _iso(link.used_at),
        "revokedAt": _iso(link.revoked_at),
    }


@require_GET
def election_results(request: HttpRequest, election_id: int) -> JsonResponse:
    try:
        election = _load_election(election_id)
        if not can_view_results(user=request.user, public_results=election.public_results):
            return JsonResponse(
                {"ok": False, "error": "Results are not public for this election.", "code": "forbidden"},
                status=403,
            )
        results = get_cached_election_results(election_id=election.pk)
        record_results_view(
            election=election,
            actor=_request_actor(request),
            ip=client_ip(request),
            user_agent=client_user_agent(request),
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, **results})


@require_GET
@json_permission_required(VOTING_VIEW_VOTE)
def election_results_export(request: HttpRequest, election_id: int) -> HttpResponse:
    try:
        _load_election(election_id)
        export = export_election_results(
            election_id=election_id,
            fmt=_normalize_str(request.GET.get("format")) or "csv",
            actor=_request_actor(request),
            ip=client_ip(request),
            user_agent=client_user_agent(request),
        )
    except VotingError as exc:
        return voting_error_response(exc)

    response = HttpResponse(export.content, content_type=export.content_type)
    response["Content-Disposition"] = f'attachment; filename="{export.filename}"'
    return response


@json_permission_required_any(ELECTION_ADMIN_PERMISSIONS)
def _list_election_voting_links(request: HttpRequest, election_id: int) -> JsonResponse:
    try:
        election = _load_election(election_id)
    except VotingError as exc:
        return voting_error_response(exc)

    status = _normalize_str(request.GET.get("status")) or None
    if status is not None and status not in VotingLink.Status.values:
        return JsonResponse({"ok": False, "error": f"Unknown status: {status}.", "code": "bad_request"}, status=400)

    paginator = Paginator(list_voting_links(election=election, status=status), settings.VOTING_LINKS_PAGE_SIZE)
    page = paginator.get_page(request.GET.get("page") or 1)
    return JsonResponse(
        {
            "ok": True,
            "links": [_serialize_link(link) for link in page.object_list],
            "page": page.number,
            "numPages": paginator.num_pages,
            "count": paginator.count,
        }
    )


@json_permission_required(VOTING_ADD_VOTINGLINK)
def _generate_election_voting_links(request: HttpRequest, election_id: int) -> JsonResponse:
    try:
        data = parse_json_body(request)
        member_ids_raw = data.get("memberIds")
        member_ids: list[int] | None = None
        if member_ids_raw is not None:
            if not isinstance(member_ids_raw, list):
                raise RequestPayloadError("memberIds must be a list.")
            try:
                member_ids = [int(member_id) for member_id in member_ids_raw]
            except (TypeError, ValueError) as exc:
                raise RequestPayloadError("memberIds must contain integers.") from exc

        batch = generate_voting_links(
            election=election_id,
            member_ids=member_ids,
            actor=_request_actor(request),
            send_emails=data.get("sendEmails", True) is not False,
            request=request,
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, **batch.as_dict()}, status=201)


@require_http_methods(["GET", "POST"])
def election_voting_links(request: HttpRequest, election_id: int) -> HttpResponse:
    if request.method == "POST":
        return _generate_election_voting_links(request, election_id)
    return _list_election_voting_links(request, election_id)


@require_POST
@json_permission_required(VOTING_CHANGE_VOTINGLINK)
def voting_link_revoke(request: HttpRequest, link_id: int) -> JsonResponse:
    try:
        data = parse_json_body(request)
        link = revoke_voting_link(
            link=link_id,
            actor=_request_actor(request),
            reason=_normalize_str(data.get("reason")),
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, "link": _serialize_link(link)})


@require_POST
@json_permission_required(VOTING_CHANGE_ELECTION)
def election_lifecycle(request: HttpRequest, election_id: int, action: str) -> JsonResponse:
    try:
        actor = _request_actor(request)
        if action == "cancel":
            data = parse_json_body(request)
            election = cancel_election(election=election_id, actor=actor, reason=_normalize_str(data.get("reason")))
        else:
            transition = _LIFECYCLE_ACTIONS.get(action)
            if transition is None:
                return JsonResponse({"ok": False, "error": "Unknown action.", "code": "not_found"}, status=404)
            election = transition(election=election_id, actor=actor)
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, "election": {"id": election.pk, "status": election.status}})


@require_POST
@json_permission_required(VOTING_CHANGE_VOTE)
def vote_invalidate(request: HttpRequest, vote_id: int) -> JsonResponse:
    try:
        data = parse_json_body(request)
        status = _normalize_str(data.get("status")) or Vote.Status.invalidated
        if status not in {Vote.Status.invalidated, Vote.Status.disputed}:
            raise RequestPayloadError("status must be invalidated or disputed.")
        vote = invalidate_vote(
            vote_id=vote_id,
            reason=_normalize_str(data.get("reason")),
            actor=_request_actor(request),
            status=status,
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, "vote": {**serialize_vote(vote), "invalidationReason": vote.invalidation_reason}})
