from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from functools import partial

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Max, Prefetch
from django.utils import timezone

from voting.broadcast import emit_election_status, emit_vote_update
from voting.elections_eligibility import eligible_members_queryset, ensure_member_can_vote
from voting.exceptions import (
    CandidateIneligibleError,
    CandidateMismatchError,
    CandidateNotFoundError,
    DuplicateVoteError,
    ElectionConfigurationError,
    ElectionNotActiveError,
    ElectionNotFoundError,
    ElectionStateError,
    ElectionWindowClosedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkNotFoundError,
    MemberNotFoundError,
    PositionNotFoundError,
    VoteNotFoundError,
    VoteStateError,
    VotingError,
)
from voting.models import Candidate, Election, Member, Position, Vote, VotingLink, VotingLog
from voting.tokens import hash_token, read_voting_token
from voting.voting_links import ensure_link_usable, expire_stale_links, mark_link_used
from voting.voting_log import AuditActor, normalize_ip, record_failed_voting_action, record_voting_log

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")

# Ballot structure is frozen once voting can start.
BALLOT_EDITABLE_STATUSES = frozenset({Election.Status.pending, Election.Status.approved})

# Window, scope and eligibility rules can only change while pending.
ELECTION_SETTINGS_FIELDS = frozenset(
    {"start_time", "end_time", "chapter", "is_national", "require_verification", "allow_multiple_positions"}
)
ELECTION_DETAIL_FIELDS = frozenset({"title", "description", "public_results", "notes"})
POSITION_EDITABLE_FIELDS = frozenset({"name", "description", "order", "is_active"})
CANDIDATE_EDITABLE_FIELDS = frozenset({"name", "email", "bio", "manifesto", "photo_url", "order", "is_active"})


@dataclass(frozen=True, slots=True)
class VoteRequest:
    member_id: int
    candidate_id: int
    position_id: int
    election_id: int
    token: str | None = None
    ip: str = ""
    user_agent: str = ""
    chapter: str | None = None


def vote_percentage(votes: int, total: int) -> float:
    if total <= 0:
        return 0.0
    value = (Decimal(int(votes)) * 100 / Decimal(int(total))).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return float(value)


def _turnout(*, votes_cast: int, eligible: int) -> Decimal:
    if eligible <= 0:
        return Decimal("0.00")
    value = Decimal(int(votes_cast)) * 100 / Decimal(int(eligible))
    return min(value, Decimal(100)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def _get_election(election_id: int) -> Election:
    try:
        return Election.objects.get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise ElectionNotFoundError() from exc


def _election_summary(election: Election) -> dict[str, object]:
    return {
        "id": election.pk,
        "title": election.title,
        "description": election.description,
        "chapter": election.chapter,
        "isNational": election.is_national,
        "status": election.status,
        "startTime": election.start_time.isoformat(),
        "endTime": election.end_time.isoformat(),
        "requireVerification": election.require_verification,
        "allowMultiplePositions": election.allow_multiple_positions,
        "publicResults": election.public_results,
    }


# Vote casting


def _record_cast_failure(vote_request: VoteRequest, error: VotingError) -> None:
    logger.info(
        "Vote rejected code=%s election_id=%s position_id=%s",
        error.code,
        vote_request.election_id,
        vote_request.position_id,
        extra={
            "event": "chapterhouse.voting.vote.rejected",
            "component": "voting",
            "outcome": "rejected",
            "code": error.code,
            "election_id": vote_request.election_id,
        },
    )
    record_failed_voting_action(
        action=VotingLog.Action.vote_failed,
        error=error,
        election_id=vote_request.election_id,
        actor=AuditActor(id=str(vote_request.member_id), role=VotingLog.ActorRole.member),
        resource_type="position",
        resource_id=vote_request.position_id,
        details={
            "member_id": vote_request.member_id,
            "candidate_id": vote_request.candidate_id,
            "position_id": vote_request.position_id,
        },
        ip=vote_request.ip,
        user_agent=vote_request.user_agent,
    )


def position_tally(position: Position | int) -> dict[str, object]:
    position_id = position.pk if isinstance(position, Position) else int(position)
    total = int(Position.objects.filter(pk=position_id).values_list("total_votes", flat=True).first() or 0)
    candidates = Candidate.objects.filter(position_id=position_id).order_by("-votes_count", "order", "id")
    return {
        "positionId": position_id,
        "totalVotes": total,
        "candidates": [
            {
                "id": candidate.pk,
                "name": candidate.name,
                "isActive": candidate.is_active,
                "isWithdrawn": candidate.is_withdrawn,
                "votesCount": candidate.votes_count,
                "votePercentage": vote_percentage(candidate.votes_count, total),
            }
            for candidate in candidates
        ],
    }


def _after_vote_committed(*, election_id: int, position_id: int, candidate_id: int) -> None:
    # Display stats only; the committed vote is already durable.
    try:
        refresh_election_turnout(Election.objects.get(pk=election_id))
        emit_vote_update(election_id, position_id, candidate_id, tally=position_tally(position_id))
    except Exception:
        logger.exception(
            "Post-commit vote refresh failed election_id=%s position_id=%s",
            election_id,
            position_id,
            extra={
                "event": "chapterhouse.voting.vote.post_commit_failed",
                "component": "voting",
                "outcome": "error",
                "election_id": election_id,
            },
        )


@transaction.atomic
def _cast_vote_atomic(vote_request: VoteRequest, *, token_hash: str) -> Vote:
    now = timezone.now()

    election = _get_election(vote_request.election_id)
    if election.status != Election.Status.active:
        raise ElectionNotActiveError()
    if not (election.start_time <= now <= election.end_time):
        raise ElectionWindowClosedError()

    try:
        member = Member.objects.get(pk=vote_request.member_id)
    except Member.DoesNotExist as exc:
        raise MemberNotFoundError() from exc
    ensure_member_can_vote(election=election, member=member)

    # Fast path only; the unique constraint on the insert below is the guarantee.
    if Vote.objects.has_voted(member=member, position=vote_request.position_id, election=election):
        raise DuplicateVoteError()
    if not election.allow_multiple_positions and Vote.objects.filter(member=member, election=election).exists():
        raise DuplicateVoteError("You have already voted in this election.")

    try:
        candidate = Candidate.objects.select_related("position").get(pk=vote_request.candidate_id)
    except Candidate.DoesNotExist as exc:
        raise CandidateNotFoundError() from exc
    if not candidate.is_eligible:
        raise CandidateIneligibleError()
    if candidate.position_id != vote_request.position_id or candidate.election_id != election.pk:
        raise CandidateMismatchError()
    position = candidate.position
    if not position.is_active:
        raise PositionNotFoundError("Position is not open for voting.")

    link: VotingLink | None = None
    if token_hash:
        link = (
            VotingLink.objects.select_for_update()
            .filter(token_hash=token_hash, member=member, election=election)
            .first()
        )
        if link is None:
            raise LinkInvalidError()
        ensure_link_usable(link, now=now, persist_expiry=False)

    try:
        with transaction.atomic():
            vote = Vote.objects.create(
                member=member,
                member_email=member.email,
                member_name=member.full_name,
                candidate=candidate,
                position=position,
                election=election,
                chapter=vote_request.chapter or member.chapter,
                link_token=vote_request.token or "",
                link_token_hash=token_hash,
                timestamp=now,
                ip_address=normalize_ip(vote_request.ip),
                user_agent=vote_request.user_agent,
                verified=link is not None,
            )
    except IntegrityError as exc:
        # A concurrent request for the same ballot slot won the insert.
        raise DuplicateVoteError() from exc

    first_vote_in_election = not Vote.objects.filter(member=member, election=election).exclude(pk=vote.pk).exists()

    Candidate.objects.filter(pk=candidate.pk).update(votes_count=F("votes_count") + 1)
    Position.objects.filter(pk=position.pk).update(total_votes=F("total_votes") + 1)
    election_increments: dict[str, F] = {"total_votes_cast": F("total_votes_cast") + 1}
    if first_vote_in_election:
        election_increments["total_voters"] = F("total_voters") + 1
    Election.objects.filter(pk=election.pk).update(**election_increments)

    if link is not None:
        voted_position_ids = Vote.objects.voted_position_ids(member=member, election=election)
        ballot_position_ids = set(election.positions.filter(is_active=True).values_list("id", flat=True))
        if not election.allow_multiple_positions or ballot_position_ids <= voted_position_ids:
            mark_link_used(link, voted_position_ids)

    record_voting_log(
        action=VotingLog.Action.vote_cast,
        actor=AuditActor.for_member(member),
        resource_type="vote",
        resource_id=vote.pk,
        election=election,
        chapter=vote.chapter,
        details={
            "position_id": position.pk,
            "candidate_id": candidate.pk,
            "voting_link_id": link.pk if link is not None else None,
            "link_used": link is not None and link.status == VotingLink.Status.used,
        },
        ip=vote_request.ip,
        user_agent=vote_request.user_agent,
    )

    transaction.on_commit(
        partial(
            _after_vote_committed,
            election_id=election.pk,
            position_id=position.pk,
            candidate_id=candidate.pk,
        )
    )
    return vote


def cast_vote(vote_request: VoteRequest) -> Vote:
    """Record one vote for one position, exactly once.

    Validation, the ledger insert, counter increments, link bookkeeping and the
    audit entry commit together or not at all. Rejected attempts are audited
    afterwards, outside the rolled-back transaction. Turnout refresh and the
    live tally broadcast run after commit and never fail the vote.
    """
    token = str(vote_request.token or "").strip()
    token_hash = hash_token(token) if token else ""

    try:
        vote = _cast_vote_atomic(vote_request, token_hash=token_hash)
    except LinkExpiredError as exc:
        # The expiry transition is persisted even though the cast was rolled back.
        expire_stale_links(token_hash=token_hash)
        _record_cast_failure(vote_request, exc)
        raise
    except VotingError as exc:
        _record_cast_failure(vote_request, exc)
        raise

    logger.info(
        "Vote cast election_id=%s position_id=%s vote_id=%s",
        vote.election_id,
        vote.position_id,
        vote.pk,
        extra={
            "event": "chapterhouse.voting.vote.cast",
            "component": "voting",
            "outcome": "success",
            "election_id": vote.election_id,
            "position_id": vote.position_id,
        },
    )
    return vote


# Results


def _candidate_result(candidate: Candidate, *, position_total: int) -> dict[str, object]:
    return {
        "id": candidate.pk,
        "name": candidate.name,
        "bio": candidate.bio,
        "photoUrl": candidate.photo_url,
        "order": candidate.order,
        "isActive": candidate.is_active,
        "isWithdrawn": candidate.is_withdrawn,
        "votesCount": candidate.votes_count,
        "votePercentage": vote_percentage(candidate.votes_count, position_total),
    }


def get_election_results(*, election_id: int) -> dict[str, object]:
    """Point-in-time results snapshot read from the maintained counters.

    Candidates are ranked by votes (ties broken by display order). The ledger
    is not scanned here; reconcile_vote_counters covers that.
    """
    election = _get_election(election_id)
    positions = (
        Position.objects.filter(election=election)
        .order_by("order", "id")
        .prefetch_related(
            Prefetch(
                "candidates",
                queryset=Candidate.objects.order_by("-votes_count", "order", "id"),
                to_attr="ranked_candidates",
            )
        )
    )

    return {
        "election": {
            **_election_summary(election),
            "totalEligibleVoters": election.total_eligible_voters,
            "totalVotesCast": election.total_votes_cast,
            "totalVoters": election.total_voters,
            "turnoutPercentage": float(election.turnout_percentage),
        },
        "positions": [
            {
                "position": {
                    "id": position.pk,
                    "name": position.name,
                    "description": position.description,
                    "order": position.order,
                    "isActive": position.is_active,
                    "totalVotes": position.total_votes,
                },
                "candidates": [
                    _candidate_result(candidate, position_total=position.total_votes)
                    for candidate in position.ranked_candidates
                ],
            }
            for position in positions
        ],
    }


def record_results_view(
    *,
    election: Election,
    actor: AuditActor | None = None,
    ip: str = "",
    user_agent: str = "",
) -> VotingLog:
    return record_voting_log(
        action=VotingLog.Action.results_viewed,
        actor=actor,
        resource_type="election",
        resource_id=election.pk,
        election=election,
        ip=ip,
        user_agent=user_agent,
    )


# Link validation


def _validate_voting_link(*, token: str, member_id: int | None, ip: str, user_agent: str) -> dict[str, object]:
    payload = read_voting_token(token)
    if member_id is not None and int(member_id) != payload.member_id:
        raise LinkInvalidError("Voting link does not belong to this member.")

    link = VotingLink.objects.select_related("election", "member").filter(token_hash=hash_token(token)).first()
    if link is None:
        raise LinkNotFoundError()
    if link.member_id != payload.member_id or link.election_id != payload.election_id:
        raise LinkInvalidError()

    ensure_link_usable(link)
    link.record_access(ip)

    election = link.election
    positions = list(
        Position.objects.filter(election=election, is_active=True)
        .order_by("order", "id")
        .prefetch_related(
            Prefetch(
                "candidates",
                queryset=Candidate.objects.filter(is_active=True, is_withdrawn=False).order_by("order", "id"),
                to_attr="ballot_candidates",
            )
        )
    )
    voted_position_ids = Vote.objects.voted_position_ids(member=link.member_id, election=election)

    record_voting_log(
        action=VotingLog.Action.vote_link_validated,
        actor=AuditActor.for_member(link.member),
        resource_type="voting_link",
        resource_id=link.pk,
        election=election,
        details={"access_count": link.access_count},
        ip=ip,
        user_agent=user_agent,
    )

    return {
        "election": {
            **_election_summary(election),
            "isOpen": election.is_open(),
        },
        "positions": [
            {
                "id": position.pk,
                "name": position.name,
                "description": position.description,
                "order": position.order,
                "candidates": [
                    {
                        "id": candidate.pk,
                        "name": candidate.name,
                        "bio": candidate.bio,
                        "manifesto": candidate.manifesto,
                        "photoUrl": candidate.photo_url,
                        "order": candidate.order,
                    }
                    for candidate in position.ballot_candidates
                ],
                "hasVoted": position.pk in voted_position_ids,
            }
            for position in positions
        ],
        "memberId": link.member_id,
        "expiresAt": link.expires_at.isoformat(),
    }


def validate_voting_link(
    *,
    token: str,
    member_id: int | None = None,
    ip: str = "",
    user_agent: str = "",
) -> dict[str, object]:
    """Return the ballot a voting link authorizes, with per-position hasVoted flags."""
    normalized = str(token or "").strip()
    try:
        return _validate_voting_link(token=normalized, member_id=member_id, ip=ip, user_agent=user_agent)
    except VotingError as exc:
        link = None
        if normalized:
            link = VotingLink.objects.filter(token_hash=hash_token(normalized)).only("election_id").first()
        record_failed_voting_action(
            action=VotingLog.Action.vote_link_validated,
            error=exc,
            election_id=link.election_id if link is not None else None,
            resource_type="voting_link",
            resource_id=link.pk if link is not None else "",
            ip=ip,
            user_agent=user_agent,
        )
        raise


# Election lifecycle


def create_election(
    *,
    title: str,
    start_time: datetime.datetime,
    end_time: datetime.datetime,
    actor: AuditActor | None = None,
    description: str = "",
    chapter: str = "",
    is_national: bool = False,
    require_verification: bool = True,
    allow_multiple_positions: bool = True,
    public_results: bool = False,
    notes: str = "",
) -> Election:
    actor = actor or AuditActor.system()
    title = str(title or "").strip()
    if not title:
        raise ElectionConfigurationError("Election title is required.")
    if end_time <= start_time:
        raise ElectionConfigurationError("End time must be after start time.")
    if not is_national and not str(chapter or "").strip():
        raise ElectionConfigurationError("Chapter elections need a chapter.")

    with transaction.atomic():
        election = Election.objects.create(
            title=title,
            description=description,
            chapter=str(chapter or "").strip(),
            is_national=is_national,
            start_time=start_time,
            end_time=end_time,
            created_by=actor.label,
            require_verification=require_verification,
            allow_multiple_positions=allow_multiple_positions,
            public_results=public_results,
            notes=notes,
        )
        record_voting_log(
            action=VotingLog.Action.election_created,
            actor=actor,
            resource_type="election",
            resource_id=election.pk,
            election=election,
            details={"title": election.title, "is_national": election.is_national},
        )
    return election


def _transition_election(
    *,
    election: Election | int,
    target: str,
    action: str,
    actor: AuditActor,
    details: dict[str, object] | None = None,
) -> Election:
    election_id = election.pk if isinstance(election, Election) else int(election)
    try:
        locked = Election.objects.select_for_update().get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise ElectionNotFoundError() from exc

    if not locked.can_transition_to(target):
        raise ElectionStateError(f"Cannot move election from {locked.status} to {target}.")

    previous = locked.status
    locked.status = target
    update_fields = ["status", "updated_at"]
    if target == Election.Status.approved:
        locked.approved_by = actor.label
        locked.approved_at = timezone.now()
        update_fields += ["approved_by", "approved_at"]
    elif target == Election.Status.active and locked.total_eligible_voters == 0:
        locked.total_eligible_voters = eligible_members_queryset(election=locked).count()
        update_fields.append("total_eligible_voters")
    locked.save(update_fields=update_fields)

    if target == Election.Status.closed:
        refresh_election_turnout(locked)

    record_voting_log(
        action=action,
        actor=actor,
        resource_type="election",
        resource_id=locked.pk,
        election=locked,
        details={"from_status": previous, "to_status": target, **(details or {})},
    )
    logger.info(
        "Election status changed election_id=%s from=%s to=%s",
        locked.pk,
        previous,
        target,
        extra={
            "event": "chapterhouse.voting.election.status_changed",
            "component": "voting",
            "outcome": "success",
            "election_id": locked.pk,
            "from_state": previous,
            "to_state": target,
        },
    )
    transaction.on_commit(partial(emit_election_status, locked))
    return locked


@transaction.atomic
def approve_election(*, election: Election | int, actor: AuditActor | None = None) -> Election:
    return _transition_election(
        election=election,
        target=Election.Status.approved,
        action=VotingLog.Action.election_approved,
        actor=actor or AuditActor.system(),
    )


@transaction.atomic
def start_election(*, election: Election | int, actor: AuditActor | None = None) -> Election:
    return _transition_election(
        election=election,
        target=Election.Status.active,
        action=VotingLog.Action.election_started,
        actor=actor or AuditActor.system(),
    )


@transaction.atomic
def close_election(*, election: Election | int, actor: AuditActor | None = None) -> Election:
    return _transition_election(
        election=election,
        target=Election.Status.closed,
        action=VotingLog.Action.election_closed,
        actor=actor or AuditActor.system(),
    )


@transaction.atomic
def cancel_election(*, election: Election | int, actor: AuditActor | None = None, reason: str = "") -> Election:
    return _transition_election(
        election=election,
        target=Election.Status.cancelled,
        action=VotingLog.Action.election_cancelled,
        actor=actor or AuditActor.system(),
        details={"reason": str(reason or "").strip()},
    )


def ballot_is_editable(election: Election) -> bool:
    return election.status in BALLOT_EDITABLE_STATUSES


def _ensure_ballot_editable(election: Election) -> None:
    if not ballot_is_editable(election):
        raise ElectionStateError(f"Ballot cannot be changed while the election is {election.status}.")


@transaction.atomic
def add_position(
    *,
    election: Election,
    name: str,
    description: str = "",
    order: int | None = None,
    actor: AuditActor | None = None,
) -> Position:
    _ensure_ballot_editable(election)
    name = str(name or "").strip()
    if not name:
        raise ElectionConfigurationError("Position name is required.")
    if Position.objects.filter(election=election, name=name).exists():
        raise ElectionConfigurationError(f"Position {name!r} already exists in this election.")

    if order is None:
        order = int(Position.objects.filter(election=election).aggregate(m=Max("order"))["m"] or 0) + 1

    position = Position.objects.create(election=election, name=name, description=description, order=order)
    record_voting_log(
        action=VotingLog.Action.position_created,
        actor=actor,
        resource_type="position",
        resource_id=position.pk,
        election=election,
        details={"name": position.name, "order": position.order},
    )
    return position


@transaction.atomic
def add_candidate(
    *,
    position: Position,
    name: str,
    email: str = "",
    bio: str = "",
    manifesto: str = "",
    photo_url: str = "",
    order: int | None = None,
    actor: AuditActor | None = None,
) -> Candidate:
    election = position.election
    _ensure_ballot_editable(election)
    name = str(name or "").strip()
    if not name:
        raise ElectionConfigurationError("Candidate name is required.")

    if order is None:
        order = int(Candidate.objects.filter(position=position).aggregate(m=Max("order"))["m"] or 0) + 1

    candidate = Candidate.objects.create(
        election=election,
        position=position,
        name=name,
        email=email,
        bio=bio,
        manifesto=manifesto,
        photo_url=photo_url,
        order=order,
    )
    record_voting_log(
        action=VotingLog.Action.candidate_added,
        actor=actor,
        resource_type="candidate",
        resource_id=candidate.pk,
        election=election,
        details={"name": candidate.name, "position_id": position.pk},
    )
    return candidate


@transaction.atomic
def withdraw_candidate(*, candidate: Candidate | int, actor: AuditActor | None = None, reason: str = "") -> Candidate:
    candidate_id = candidate.pk if isinstance(candidate, Candidate) else int(candidate)
    try:
        locked = Candidate.objects.select_for_update().select_related("election").get(pk=candidate_id)
    except Candidate.DoesNotExist as exc:
        raise CandidateNotFoundError() from exc

    if locked.election.status in {Election.Status.closed, Election.Status.cancelled}:
        raise ElectionStateError(f"Candidates cannot withdraw from a {locked.election.status} election.")
    if locked.is_withdrawn:
        return locked

    locked.is_withdrawn = True
    locked.withdrawn_at = timezone.now()
    locked.save(update_fields=["is_withdrawn", "withdrawn_at"])
    record_voting_log(
        action=VotingLog.Action.candidate_withdrawn,
        actor=actor,
        resource_type="candidate",
        resource_id=locked.pk,
        election=locked.election,
        details={"position_id": locked.position_id, "reason": str(reason or "").strip()},
    )
    return locked


def _audit_value(value: object) -> object:
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    return value


def _apply_changes(
    instance: Election | Position | Candidate, fields: dict[str, object]
) -> dict[str, dict[str, object]]:
    changes: dict[str, dict[str, object]] = {}
    for name, value in fields.items():
        previous = getattr(instance, name)
        if previous == value:
            continue
        changes[name] = {"from": _audit_value(previous), "to": _audit_value(value)}
        setattr(instance, name, value)
    return changes


def _reject_unknown_fields(fields: dict[str, object], allowed: frozenset[str], *, kind: str) -> None:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ElectionConfigurationError(f"{kind} fields cannot be changed here: {', '.join(unknown)}.")


def _required_text(fields: dict[str, object], name: str, *, message: str) -> None:
    if name in fields:
        fields[name] = str(fields[name] or "").strip()
        if not fields[name]:
            raise ElectionConfigurationError(message)


@transaction.atomic
def update_election(*, election: Election | int, actor: AuditActor | None = None, **fields: object) -> Election:
    """Change election details outside the status lifecycle, audited.

    Title, description, notes and the public-results flag can change at any
    time. The voting window, chapter scope and eligibility flags are fixed
    once the election leaves pending.
    """
    election_id = election.pk if isinstance(election, Election) else int(election)
    try:
        locked = Election.objects.select_for_update().get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise ElectionNotFoundError() from exc

    _reject_unknown_fields(fields, ELECTION_SETTINGS_FIELDS | ELECTION_DETAIL_FIELDS, kind="Election")
    _required_text(fields, "title", message="Election title is required.")
    if "chapter" in fields:
        fields["chapter"] = str(fields["chapter"] or "").strip()

    changes = _apply_changes(locked, fields)
    if not changes:
        return locked

    frozen = sorted(set(changes) & ELECTION_SETTINGS_FIELDS)
    if frozen and locked.status != Election.Status.pending:
        raise ElectionStateError(f"Cannot change {', '.join(frozen)} while the election is {locked.status}.")
    if locked.end_time <= locked.start_time:
        raise ElectionConfigurationError("End time must be after start time.")
    if not locked.is_national and not locked.chapter:
        raise ElectionConfigurationError("Chapter elections need a chapter.")

    locked.save(update_fields=[*sorted(changes), "updated_at"])
    record_voting_log(
        action=VotingLog.Action.election_updated,
        actor=actor,
        resource_type="election",
        resource_id=locked.pk,
        election=locked,
        details={"changes": changes},
    )
    return locked


@transaction.atomic
def update_position(*, position: Position | int, actor: AuditActor | None = None, **fields: object) -> Position:
    position_id = position.pk if isinstance(position, Position) else int(position)
    try:
        locked = Position.objects.select_for_update().select_related("election").get(pk=position_id)
    except Position.DoesNotExist as exc:
        raise PositionNotFoundError() from exc

    _ensure_ballot_editable(locked.election)
    _reject_unknown_fields(fields, POSITION_EDITABLE_FIELDS, kind="Position")
    _required_text(fields, "name", message="Position name is required.")
    if (
        "name" in fields
        and Position.objects.filter(election_id=locked.election_id, name=fields["name"]).exclude(pk=locked.pk).exists()
    ):
        raise ElectionConfigurationError(f"Position {fields['name']!r} already exists in this election.")

    changes = _apply_changes(locked, fields)
    if not changes:
        return locked

    locked.save(update_fields=sorted(changes))
    record_voting_log(
        action=VotingLog.Action.position_updated,
        actor=actor,
        resource_type="position",
        resource_id=locked.pk,
        election=locked.election,
        details={"changes": changes},
    )
    return locked


@transaction.atomic
def update_candidate(*, candidate: Candidate | int, actor: AuditActor | None = None, **fields: object) -> Candidate:
    """Edit a candidate's ballot entry while the ballot is still editable.

    The position and election are never reassigned; withdrawal goes through
    withdraw_candidate.
    """
    candidate_id = candidate.pk if isinstance(candidate, Candidate) else int(candidate)
    try:
        locked = Candidate.objects.select_for_update().select_related("election").get(pk=candidate_id)
    except Candidate.DoesNotExist as exc:
        raise CandidateNotFoundError() from exc

    _ensure_ballot_editable(locked.election)
    _reject_unknown_fields(fields, CANDIDATE_EDITABLE_FIELDS, kind="Candidate")
    _required_text(fields, "name", message="Candidate name is required.")

    changes = _apply_changes(locked, fields)
    if not changes:
        return locked

    locked.save(update_fields=sorted(changes))
    record_voting_log(
        action=VotingLog.Action.candidate_updated,
        actor=actor,
        resource_type="candidate",
        resource_id=locked.pk,
        election=locked.election,
        details={"position_id": locked.position_id, "changes": changes},
    )
    return locked


def refresh_election_turnout(election: Election) -> Decimal:
    """Recompute turnout from the election counters and persist it.

    Turnout is cast votes over eligible voters, capped at 100. Both numbers
    come from the maintained counters, never from a ledger recount.
    """
    counters = Election.objects.filter(pk=election.pk).values("total_votes_cast", "total_eligible_voters").first()
    if counters is None:
        raise ElectionNotFoundError()

    turnout = _turnout(votes_cast=counters["total_votes_cast"], eligible=counters["total_eligible_voters"])
    Election.objects.filter(pk=election.pk).update(turnout_percentage=turnout)
    election.total_votes_cast = counters["total_votes_cast"]
    election.total_eligible_voters = counters["total_eligible_voters"]
    election.turnout_percentage = turnout
    return turnout


# Administrative exception paths


@transaction.atomic
def invalidate_vote(
    *,
    vote_id: int,
    reason: str,
    actor: AuditActor,
    status: str = Vote.Status.invalidated,
) -> Vote:
    """Annotate a cast vote as invalidated (or disputed).

    The cast fields are untouched and counters are left alone; run
    reconcile_vote_counters to bring tallies in line with the ledger.
    """
    reason = str(reason or "").strip()
    if not reason:
        raise VotingError("A reason is required to invalidate a vote.")

    try:
        vote = Vote.objects.select_for_update().get(pk=vote_id)
    except Vote.DoesNotExist as exc:
        raise VoteNotFoundError() from exc

    if vote.status == Vote.Status.invalidated or vote.status == status:
        raise VoteStateError(f"Vote is already {vote.status}.")

    previous = vote.status
    Vote.objects.filter(pk=vote.pk).annotate_invalidation(
        status=status,
        invalidated_by=actor.label,
        reason=reason,
        invalidated_at=timezone.now(),
    )
    vote.refresh_from_db()

    record_voting_log(
        action=VotingLog.Action.vote_invalidated,
        actor=actor,
        resource_type="vote",
        resource_id=vote.pk,
        election=vote.election,
        chapter=vote.chapter,
        details={
            "from_status": previous,
            "to_status": vote.status,
            "reason": reason,
            "position_id": vote.position_id,
            "candidate_id": vote.candidate_id,
        },
    )
    logger.warning(
        "Vote invalidated vote_id=%s election_id=%s status=%s",
        vote.pk,
        vote.election_id,
        vote.status,
        extra={
            "event": "chapterhouse.voting.vote.invalidated",
            "component": "voting",
            "outcome": "success",
            "election_id": vote.election_id,
        },
    )
    return vote


def _drift(stored: dict[int, int], ledger: dict[int, int]) -> dict[str, dict[str, int]]:
    return {
        str(key): {"stored": stored.get(key, 0), "ledger": ledger.get(key, 0)}
        for key in sorted(set(stored) | set(ledger))
        if stored.get(key, 0) != ledger.get(key, 0)
    }


@transaction.atomic
def reconcile_vote_counters(
    *,
    election: Election | int,
    actor: AuditActor | None = None,
    apply: bool = True,
) -> dict[str, object]:
    """Compare counters with the ledger of cast votes and optionally repair them.

    This is the only path besides cast_vote that writes the vote counters.
    Returns the drift that was found.
    """
    actor = actor or AuditActor.system()
    election_id = election.pk if isinstance(election, Election) else int(election)
    try:
        locked = Election.objects.select_for_update().get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise ElectionNotFoundError() from exc

    cast_votes = Vote.objects.cast().for_election(locked)
    ledger_candidates = dict(
        cast_votes.values("candidate_id").annotate(n=Count("id")).values_list("candidate_id", "n")
    )
    ledger_positions = dict(
        cast_votes.values("position_id").annotate(n=Count("id")).values_list("position_id", "n")
    )
    ledger_total = sum(ledger_positions.values())
    ledger_voters = cast_votes.values("member_id").distinct().count()

    candidates = list(Candidate.objects.select_for_update().filter(election=locked))
    positions = list(Position.objects.select_for_update().filter(election=locked))
    stored_candidates = {c.pk: c.votes_count for c in candidates}
    stored_positions = {p.pk: p.total_votes for p in positions}

    drift: dict[str, object] = {
        "candidates": _drift(stored_candidates, ledger_candidates),
        "positions": _drift(stored_positions, ledger_positions),
        "election": {
            key: {"stored": stored, "ledger": ledger}
            for key, stored, ledger in (
                ("total_votes_cast", locked.total_votes_cast, ledger_total),
                ("total_voters", locked.total_voters, ledger_voters),
            )
            if stored != ledger
        },
    }
    has_drift = any(drift[key] for key in ("candidates", "positions", "election"))

    if apply and has_drift:
        for candidate in candidates:
            expected = ledger_candidates.get(candidate.pk, 0)
            if candidate.votes_count != expected:
                Candidate.objects.filter(pk=candidate.pk).update(votes_count=expected)
        for position in positions:
            expected = ledger_positions.get(position.pk, 0)
            if position.total_votes != expected:
                Position.objects.filter(pk=position.pk).update(total_votes=expected)
        Election.objects.filter(pk=locked.pk).update(total_votes_cast=ledger_total, total_voters=ledger_voters)
        refresh_election_turnout(locked)

    record_voting_log(
        action=VotingLog.Action.counters_reconciled,
        actor=actor,
        resource_type="election",
        resource_id=locked.pk,
        election=locked,
        details={"applied": apply and has_drift, "drift": drift},
    )

    if has_drift:
        logger.warning(
            "Vote counter drift found election_id=%s applied=%s",
            locked.pk,
            apply,
            extra={
                "event": "chapterhouse.voting.counters.drift",
                "component": "voting",
                "outcome": "repaired" if apply else "detected",
                "election_id": locked.pk,
            },
        )

    return {"election_id": locked.pk, "has_drift": has_drift, "applied": apply and has_drift, "drift": drift}
