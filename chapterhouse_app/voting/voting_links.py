"""Voting link registry: issuance, lifecycle transitions and lookups."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils import timezone

from voting.elections_eligibility import eligible_members
from voting.exceptions import (
    ElectionNotFoundError,
    ElectionStateError,
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkNotFoundError,
    LinkRevokedError,
    LinkStateError,
    NoEligibleMembersError,
)
from voting.models import Election, Member, VotingLink, VotingLog
from voting.tokens import generate_voting_token
from voting.voting_emails import send_voting_link
from voting.voting_log import AuditActor, record_voting_log

logger = logging.getLogger(__name__)

_ISSUABLE_ELECTION_STATUSES = frozenset(
    {Election.Status.pending, Election.Status.approved, Election.Status.active}
)


@dataclass(frozen=True, slots=True)
class IssuedVotingLink:
    member_id: int
    member_email: str
    member_name: str
    link: VotingLink
    already_exists: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "memberId": self.member_id,
            "memberEmail": self.member_email,
            "memberName": self.member_name,
            "link": {
                "id": self.link.pk,
                "token": self.link.token,
                "url": build_vote_url(self.link.token),
                "status": self.link.status,
                "expiresAt": self.link.expires_at.isoformat(),
                "emailSent": self.link.email_sent,
            },
            "alreadyExists": self.already_exists,
        }


@dataclass(frozen=True, slots=True)
class VotingLinkBatch:
    links: list[IssuedVotingLink]

    @property
    def total(self) -> int:
        return len(self.links)

    @property
    def new_links(self) -> int:
        return sum(1 for issued in self.links if not issued.already_exists)

    @property
    def existing_links(self) -> int:
        return sum(1 for issued in self.links if issued.already_exists)

    def as_dict(self) -> dict[str, object]:
        return {
            "links": [issued.as_dict() for issued in self.links],
            "total": self.total,
            "newLinks": self.new_links,
            "existingLinks": self.existing_links,
        }


def build_vote_url(token: str, request: HttpRequest | None = None) -> str:
    path = f"/vote/{token}"
    base = str(settings.VOTING_FRONTEND_URL or "").strip().rstrip("/")
    if base:
        return f"{base}{path}"
    if request is not None:
        return request.build_absolute_uri(path)
    raise ValueError("VOTING_FRONTEND_URL must be configured to build voting links.")


def expire_stale_links(
    *,
    election: Election | int | None = None,
    token_hash: str | None = None,
    now: datetime.datetime | None = None,
) -> int:
    """Rewrite open links past their expiry as expired; returns the number rewritten."""
    qs = VotingLink.objects.filter(status__in=VotingLink.OPEN_STATUSES, expires_at__lt=now or timezone.now())
    if election is not None:
        qs = qs.filter(election=election)
    if token_hash is not None:
        qs = qs.filter(token_hash=token_hash)
    return qs.update(status=VotingLink.Status.expired)


def ensure_link_usable(link: VotingLink, *, now: datetime.datetime | None = None, persist_expiry: bool = True) -> None:
    """Raise the lifecycle error for a link that can no longer authorize a vote.

    With ``persist_expiry`` an open link read past its expiry is rewritten to
    expired before the error is raised. Callers inside a transaction that is
    about to roll back pass False and persist with ``expire_stale_links``.
    """
    if link.status == VotingLink.Status.used:
        raise LinkAlreadyUsedError()
    if link.status == VotingLink.Status.revoked:
        raise LinkRevokedError()
    if link.status == VotingLink.Status.expired:
        raise LinkExpiredError()

    if link.is_past_expiry(now):
        if persist_expiry:
            link.expire_if_past(now)
        raise LinkExpiredError()


def mark_link_used(link: VotingLink, position_ids: Iterable[int]) -> None:
    link.mark_used(list(position_ids))


def refresh_eligible_voter_count(*, election: Election) -> int:
    total = (
        VotingLink.objects.filter(election=election)
        .exclude(status=VotingLink.Status.revoked)
        .values("member_id")
        .distinct()
        .count()
    )
    Election.objects.filter(pk=election.pk).update(total_eligible_voters=total)
    election.total_eligible_voters = total
    return total


def _open_link(*, election: Election, member: Member) -> VotingLink | None:
    return (
        VotingLink.objects.select_for_update()
        .filter(election=election, member=member, status__in=VotingLink.OPEN_STATUSES)
        .first()
    )


def _issue_link(*, election: Election, member: Member, actor: AuditActor) -> tuple[VotingLink, bool]:
    existing = _open_link(election=election, member=member)
    if existing is not None and not existing.expire_if_past():
        return existing, True

    generated = generate_voting_token(member_id=member.pk, election_id=election.pk)
    try:
        with transaction.atomic():
            link = VotingLink.objects.create(
                member=member,
                member_email=member.email,
                election=election,
                chapter=member.chapter,
                token=generated.token,
                token_hash=generated.token_hash,
                expires_at=election.end_time,
                generated_by=actor.label,
            )
    except IntegrityError:
        # A concurrent request issued the open link first; hand that one back.
        link = _open_link(election=election, member=member)
        if link is None:
            raise
        return link, True

    return link, False


def _dispatch_link_email(*, link: VotingLink, member: Member, election: Election, request: HttpRequest | None) -> None:
    sent = send_voting_link(
        to=member.email,
        name=member.full_name,
        election_title=election.title,
        vote_url=build_vote_url(link.token, request=request),
        expires_at=link.expires_at,
    )
    if not sent:
        logger.warning(
            "Voting link email not queued link_id=%s election_id=%s",
            link.pk,
            election.pk,
            extra={
                "event": "chapterhouse.voting.link.email_failed",
                "component": "voting",
                "outcome": "error",
                "election_id": election.pk,
            },
        )
        return

    link.status = VotingLink.Status.sent
    link.email_sent = True
    link.email_sent_at = timezone.now()
    link.save(update_fields=["status", "email_sent", "email_sent_at"])


@transaction.atomic
def generate_voting_links(
    *,
    election: Election | int,
    member_ids: Iterable[int] | None = None,
    actor: AuditActor | None = None,
    send_emails: bool = True,
    request: HttpRequest | None = None,
) -> VotingLinkBatch:
    actor = actor or AuditActor.system()
    election_id = election.pk if isinstance(election, Election) else int(election)
    try:
        locked = Election.objects.select_for_update().get(pk=election_id)
    except Election.DoesNotExist as exc:
        raise ElectionNotFoundError() from exc

    if locked.status not in _ISSUABLE_ELECTION_STATUSES:
        raise ElectionStateError(f"Cannot issue voting links for a {locked.status} election.")
    # Links expire with the election; one minted now would be born expired.
    if timezone.now() >= locked.end_time:
        raise ElectionStateError("Cannot issue voting links after the election has ended.")

    members = eligible_members(election=locked, member_ids=member_ids)
    if not members:
        raise NoEligibleMembersError()

    dispatch = send_emails and settings.VOTING_SEND_LINK_EMAILS
    issued: list[IssuedVotingLink] = []
    for member in members:
        link, already_exists = _issue_link(election=locked, member=member, actor=actor)

        if dispatch and not link.email_sent:
            _dispatch_link_email(link=link, member=member, election=locked, request=request)

        record_voting_log(
            action=VotingLog.Action.vote_link_generated,
            actor=actor,
            resource_type="voting_link",
            resource_id=link.pk,
            election=locked,
            details={
                "member_id": member.pk,
                "member_email": member.email,
                "already_exists": already_exists,
                "email_sent": link.email_sent,
            },
        )
        issued.append(
            IssuedVotingLink(
                member_id=member.pk,
                member_email=member.email,
                member_name=member.full_name,
                link=link,
                already_exists=already_exists,
            )
        )

    refresh_eligible_voter_count(election=locked)

    batch = VotingLinkBatch(links=issued)
    logger.info(
        "Voting links issued election_id=%s total=%d new=%d existing=%d",
        locked.pk,
        batch.total,
        batch.new_links,
        batch.existing_links,
        extra={
            "event": "chapterhouse.voting.links.issued",
            "component": "voting",
            "outcome": "success",
            "election_id": locked.pk,
            "links_total": batch.total,
            "links_new": batch.new_links,
        },
    )
    return batch


@transaction.atomic
def revoke_voting_link(*, link: VotingLink | int, actor: AuditActor | None = None, reason: str = "") -> VotingLink:
    actor = actor or AuditActor.system()
    link_id = link.pk if isinstance(link, VotingLink) else int(link)
    try:
        locked = VotingLink.objects.select_for_update().select_related("election").get(pk=link_id)
    except VotingLink.DoesNotExist as exc:
        raise LinkNotFoundError() from exc

    locked.expire_if_past()
    if locked.is_terminal:
        raise LinkStateError(f"Voting link is already {locked.status}.")

    locked.status = VotingLink.Status.revoked
    locked.revoked_at = timezone.now()
    locked.revoked_by = actor.label
    locked.revocation_reason = str(reason or "").strip()
    locked.save(update_fields=["status", "revoked_at", "revoked_by", "revocation_reason"])

    record_voting_log(
        action=VotingLog.Action.vote_link_revoked,
        actor=actor,
        resource_type="voting_link",
        resource_id=locked.pk,
        election=locked.election,
        details={"member_id": locked.member_id, "reason": locked.revocation_reason},
    )
    refresh_eligible_voter_count(election=locked.election)
    return locked


def list_voting_links(*, election: Election | int, status: str | None = None) -> QuerySet[VotingLink]:
    expire_stale_links(election=election)
    qs = VotingLink.objects.filter(election=election).select_related("member")
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-generated_at", "-id")
