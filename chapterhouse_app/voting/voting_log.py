from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from django.db import DatabaseError, transaction

from voting.exceptions import VotingError
from voting.models import Election, Member, VotingLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuditActor:
    """Who performed a voting action, as recorded in the audit log."""

    id: str = ""
    email: str = ""
    role: str = VotingLog.ActorRole.system

    @property
    def label(self) -> str:
        return self.id or self.email or str(self.role)

    @classmethod
    def system(cls, name: str = "system") -> AuditActor:
        return cls(id=name, role=VotingLog.ActorRole.system)

    @classmethod
    def for_member(cls, member: Member) -> AuditActor:
        role = member.role if member.role in VotingLog.ActorRole.values else VotingLog.ActorRole.member
        return cls(id=str(member.pk), email=member.email, role=role)

    @classmethod
    def for_user(cls, user: object) -> AuditActor:
        if getattr(user, "is_superuser", False):
            role = VotingLog.ActorRole.superadmin
        elif getattr(user, "is_staff", False):
            role = VotingLog.ActorRole.chapter_admin
        else:
            role = VotingLog.ActorRole.member

        get_username = getattr(user, "get_username", None)
        username = str(get_username() if callable(get_username) else "")
        return cls(id=username, email=str(getattr(user, "email", "") or ""), role=role)


def normalize_ip(value: str | None) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        return str(ipaddress.ip_address(raw))
    except ValueError:
        return None


def record_voting_log(
    *,
    action: str,
    actor: AuditActor | None = None,
    resource_type: str = "",
    resource_id: object = "",
    election: Election | None = None,
    chapter: str | None = None,
    details: Mapping[str, object] | None = None,
    message: str = "",
    ip: str | None = None,
    user_agent: str = "",
    success: bool = True,
    error_message: str = "",
) -> VotingLog:
    actor = actor or AuditActor.system()
    if chapter is None:
        chapter = election.chapter if election is not None else ""

    return VotingLog.objects.create(
        actor_id=actor.id,
        actor_email=actor.email,
        actor_role=actor.role,
        action=action,
        resource_type=resource_type,
        resource_id="" if resource_id is None else str(resource_id),
        election=election,
        chapter=chapter,
        details=dict(details or {}),
        message=message,
        ip=normalize_ip(ip),
        user_agent=str(user_agent or ""),
        success=success,
        error_message=error_message,
    )


def record_failed_voting_action(
    *,
    action: str,
    error: VotingError,
    election_id: int | None = None,
    details: Mapping[str, object] | None = None,
    **kwargs,
) -> VotingLog | None:
    """Audit a rejected request in its own savepoint.

    Callers invoke this after their transaction has rolled back, so the entry
    survives even though nothing else from the attempt does.
    """
    payload: dict[str, object] = {"code": error.code, **(details or {})}
    try:
        with transaction.atomic():
            election = Election.objects.filter(pk=election_id).first() if election_id else None
            return record_voting_log(
                action=action,
                election=election,
                details=payload,
                success=False,
                error_message=error.message,
                **kwargs,
            )
    except DatabaseError:
        # The original VotingError is what the caller must see.
        logger.exception(
            "Failed to record voting audit entry action=%s code=%s",
            action,
            error.code,
            extra={
                "event": "chapterhouse.voting.audit.write_failed",
                "component": "voting",
                "outcome": "error",
                "action": action,
            },
        )
        return None
