"""Member-facing voting endpoints.

Both endpoints are authorized by the voting link token in the request body,
not by a session, so they are CSRF exempt.
"""

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from voting.elections_services import VoteRequest, cast_vote, validate_voting_link
from voting.exceptions import LinkInvalidError, TokenInvalidError, TokenMalformedError, VotingError
from voting.models import Vote, VotingLog
from voting.tokens import read_voting_token
from voting.views_utils import (
    _normalize_str,
    client_ip,
    client_user_agent,
    parse_json_body,
    required_int,
    voting_error_response,
)
from voting.voting_log import record_failed_voting_action


def serialize_vote(vote: Vote) -> dict[str, object]:
    return {
        "id": vote.pk,
        "electionId": vote.election_id,
        "positionId": vote.position_id,
        "candidateId": vote.candidate_id,
        "status": vote.status,
        "verified": vote.verified,
        "timestamp": vote.timestamp.isoformat(),
    }


@csrf_exempt
@require_POST
def voting_validate_link(request: HttpRequest) -> JsonResponse:
    try:
        data = parse_json_body(request)
        member_id = required_int(data, "memberId") if _normalize_str(data.get("memberId")) else None
        ballot = validate_voting_link(
            token=_normalize_str(data.get("token")),
            member_id=member_id,
            ip=client_ip(request),
            user_agent=client_user_agent(request),
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, **ballot})


@csrf_exempt
@require_POST
def voting_cast_vote(request: HttpRequest) -> JsonResponse:
    ip = client_ip(request)
    user_agent = client_user_agent(request)
    try:
        data = parse_json_body(request)
        token = _normalize_str(data.get("token"))
        if not token:
            raise LinkInvalidError("A voting link is required to vote.")

        try:
            payload = read_voting_token(token)
        except (TokenInvalidError, TokenMalformedError) as exc:
            record_failed_voting_action(
                action=VotingLog.Action.vote_failed,
                error=exc,
                resource_type="voting_link",
                ip=ip,
                user_agent=user_agent,
            )
            raise

        if _normalize_str(data.get("electionId")) and required_int(data, "electionId") != payload.election_id:
            raise LinkInvalidError("Voting link is for a different election.")

        vote = cast_vote(
            VoteRequest(
                member_id=payload.member_id,
                candidate_id=required_int(data, "candidateId"),
                position_id=required_int(data, "positionId"),
                election_id=payload.election_id,
                token=token,
                ip=ip,
                user_agent=user_agent,
            )
        )
    except VotingError as exc:
        return voting_error_response(exc)

    return JsonResponse({"ok": True, "vote": serialize_vote(vote)}, status=201)
