from __future__ import annotations

import datetime
from decimal import Decimal
from typing import override

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from voting.exceptions import AuditLogImmutableError, VoteImmutableError


class Member(models.Model):
    """Local mirror of the member directory.

    The voting core only reads these rows; profile management lives elsewhere.
    """

    class Role(models.TextChoices):
        member = "member", "Member"
        chapter_admin = "chapter-admin", "Chapter admin"
        superadmin = "superadmin", "Super admin"

    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default="")
    chapter = models.CharField(max_length=100, blank=True, default="", db_index=True)
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.member)
    is_active = models.BooleanField(default=True)
    is_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("last_name", "first_name", "id")

    def __str__(self) -> str:
        return f"{self.full_name} <{self.email}>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


class Election(models.Model):
    class Status(models.TextChoices):
        pending = "pending", "Pending"
        approved = "approved", "Approved"
        active = "active", "Active"
        closed = "closed", "Closed"
        cancelled = "cancelled", "Cancelled"

    # Forward-only lifecycle; cancellation is allowed from any state before close.
    TRANSITIONS: dict[str, frozenset[str]] = {
        Status.pending: frozenset({Status.approved, Status.cancelled}),
        Status.approved: frozenset({Status.active, Status.cancelled}),
        Status.active: frozenset({Status.closed, Status.cancelled}),
        Status.closed: frozenset(),
        Status.cancelled: frozenset(),
    }

    title = models.CharField(max_length=200)
    description = models.TextField(max_length=2000, blank=True, default="")
    chapter = models.CharField(max_length=100, blank=True, default="", db_index=True)
    is_national = models.BooleanField(default=False)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.pending, db_index=True)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()

    created_by = models.CharField(max_length=255, blank=True, default="")
    approved_by = models.CharField(max_length=255, blank=True, default="")
    approved_at = models.DateTimeField(blank=True, null=True)

    require_verification = models.BooleanField(default=True)
    allow_multiple_positions = models.BooleanField(default=True)
    public_results = models.BooleanField(default=False)

    # Maintained by atomic increments in the casting path; see reconcile_vote_counters.
    total_eligible_voters = models.PositiveIntegerField(default=0)
    total_votes_cast = models.PositiveIntegerField(default=0)
    total_voters = models.PositiveIntegerField(default=0)
    turnout_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))

    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-start_time", "id")
        constraints = [
            models.CheckConstraint(
                condition=Q(end_time__gt=F("start_time")),
                name="election_end_after_start",
            ),
        ]

    def __str__(self) -> str:
        return self.title

    @override
    def clean(self) -> None:
        super().clean()
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError({"end_time": "End time must be after start time."})
        if not self.is_national and not str(self.chapter or "").strip():
            raise ValidationError({"chapter": "Chapter elections need a chapter."})

    def is_open(self, now: datetime.datetime | None = None) -> bool:
        now = now or timezone.now()
        return self.status == self.Status.active and self.start_time <= now <= self.end_time

    def can_transition_to(self, status: str) -> bool:
        return status in self.TRANSITIONS.get(self.status, frozenset())


class Position(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="positions")
    name = models.CharField(max_length=100)
    description = models.TextField(max_length=500, blank=True, default="")
    order = models.PositiveIntegerField(default=0)
    total_votes = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("order", "id")
        constraints = [
            models.UniqueConstraint(fields=["election", "name"], name="uniq_position_election_name"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.election_id})"


class Candidate(models.Model):
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="candidates")
    position = models.ForeignKey(Position, on_delete=models.CASCADE, related_name="candidates")
    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default="")
    bio = models.TextField(blank=True, default="")
    manifesto = models.TextField(blank=True, default="")
    photo_url = models.URLField(blank=True, default="", max_length=2048)
    order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    is_withdrawn = models.BooleanField(default=False)
    withdrawn_at = models.DateTimeField(blank=True, null=True)

    # Only ever changed by F() increments in cast_vote and by explicit reconciliation.
    votes_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("order", "id")

    def __str__(self) -> str:
        return f"{self.name} ({self.position_id})"

    @override
    def clean(self) -> None:
        super().clean()
        if self.position_id and self.election_id and self.position.election_id != self.election_id:
            raise ValidationError({"position": "Position belongs to a different election."})

    @property
    def is_eligible(self) -> bool:
        return self.is_active and not self.is_withdrawn


class VotingLink(models.Model):
    class Status(models.TextChoices):
        pending = "pending", "Pending"
        sent = "sent", "Sent"
        used = "used", "Used"
        expired = "expired", "Expired"
        revoked = "revoked", "Revoked"

    OPEN_STATUSES: frozenset[str] = frozenset({Status.pending, Status.sent})

    member = models.ForeignKey(Member, on_delete=models.PROTECT, related_name="voting_links")
    # Denormalised so the audit trail survives member record changes.
    member_email = models.EmailField()
    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="voting_links")
    chapter = models.CharField(max_length=100, blank=True, default="")

    token = models.CharField(max_length=512, unique=True)
    token_hash = models.CharField(max_length=64, unique=True)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.pending, db_index=True)
    used_at = models.DateTimeField(blank=True, null=True)
    used_for_positions = models.JSONField(blank=True, default=list)
    expires_at = models.DateTimeField()

    generated_by = models.CharField(max_length=255, blank=True, default="")
    generated_at = models.DateTimeField(auto_now_add=True)

    email_sent = models.BooleanField(default=False)
    email_sent_at = models.DateTimeField(blank=True, null=True)

    accessed_at = models.DateTimeField(blank=True, null=True)
    access_count = models.PositiveIntegerField(default=0)
    last_access_ip = models.GenericIPAddressField(blank=True, null=True)

    revoked_at = models.DateTimeField(blank=True, null=True)
    revoked_by = models.CharField(max_length=255, blank=True, default="")
    revocation_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ("-generated_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=["member", "election"],
                name="uniq_votinglink_open_member_election",
                condition=Q(status__in=["pending", "sent"]),
            ),
        ]
        indexes = [
            models.Index(fields=["election", "status"], name="votinglink_el_status"),
        ]

    def __str__(self) -> str:
        return f"voting-link:{self.election_id}:{self.member_id}:{self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status not in self.OPEN_STATUSES

    def is_past_expiry(self, now: datetime.datetime | None = None) -> bool:
        return (now or timezone.now()) > self.expires_at

    def expire_if_past(self, now: datetime.datetime | None = None) -> bool:
        """Persist the expired status when an open link is read past its expiry.

        Returns True when the row was rewritten.
        """
        if self.is_terminal or not self.is_past_expiry(now):
            return False

        self.status = self.Status.expired
        self.save(update_fields=["status"])
        return True

    def mark_used(self, position_ids: list[int]) -> None:
        self.status = self.Status.used
        self.used_at = timezone.now()
        self.used_for_positions = sorted({int(pid) for pid in position_ids})
        self.save(update_fields=["status", "used_at", "used_for_positions"])

    def record_access(self, ip: str | None = None) -> None:
        now = timezone.now()
        VotingLink.objects.filter(pk=self.pk).update(
            access_count=F("access_count") + 1,
            accessed_at=now,
            last_access_ip=ip or None,
        )
        self.refresh_from_db(fields=["access_count", "accessed_at", "last_access_ip"])


class VoteQuerySet(models.QuerySet["Vote"]):
    """Read helpers for the vote ledger.

    The generic bulk write paths are closed: a cast vote is never rewritten or
    removed. ``annotate_invalidation`` is the one sanctioned write and only
    touches the status and invalidation metadata columns.
    """

    def cast(self) -> VoteQuerySet:
        return self.filter(status=Vote.Status.cast)

    def for_election(self, election: Election | int) -> VoteQuerySet:
        return self.filter(election=election)

    def has_voted(self, *, member: Member | int, position: Position | int, election: Election | int) -> bool:
        # Any ledger row blocks a second ballot, including disputed or invalidated ones,
        # because the storage constraint covers every status.
        return self.filter(member=member, position=position, election=election).exists()

    def voted_position_ids(self, *, member: Member | int, election: Election | int) -> set[int]:
        return set(self.filter(member=member, election=election).values_list("position_id", flat=True))

    def candidate_votes(self, candidate: Candidate | int) -> int:
        return self.cast().filter(candidate=candidate).count()

    def position_votes(self, position: Position | int) -> int:
        return self.cast().filter(position=position).count()

    @override
    def update(self, **kwargs: object) -> int:
        raise VoteImmutableError("Votes cannot be updated; use invalidate_vote().")

    @override
    def delete(self) -> tuple[int, dict[str, int]]:
        raise VoteImmutableError("Votes cannot be deleted.")

    def annotate_invalidation(
        self,
        *,
        status: str,
        invalidated_by: str,
        reason: str,
        invalidated_at: datetime.datetime,
    ) -> int:
        if status not in {Vote.Status.disputed, Vote.Status.invalidated}:
            raise ValueError(f"Unsupported vote status change: {status}")
        return super().update(
            status=status,
            invalidated_at=invalidated_at,
            invalidated_by=invalidated_by,
            invalidation_reason=reason,
        )


class Vote(models.Model):
    class Status(models.TextChoices):
        cast = "cast", "Cast"
        disputed = "disputed", "Disputed"
        invalidated = "invalidated", "Invalidated"

    member = models.ForeignKey(Member, on_delete=models.PROTECT, related_name="votes")
    member_email = models.EmailField()
    member_name = models.CharField(max_length=200, blank=True, default="")

    candidate = models.ForeignKey(Candidate, on_delete=models.PROTECT, related_name="votes")
    position = models.ForeignKey(Position, on_delete=models.PROTECT, related_name="votes")
    election = models.ForeignKey(Election, on_delete=models.PROTECT, related_name="votes")
    chapter = models.CharField(max_length=100, blank=True, default="")

    link_token = models.CharField(max_length=512, blank=True, default="")
    link_token_hash = models.CharField(max_length=64, blank=True, default="", db_index=True)

    timestamp = models.DateTimeField(default=timezone.now)
    ip_address = models.GenericIPAddressField(blank=True, null=True)
    user_agent = models.TextField(blank=True, default="")
    verified = models.BooleanField(default=False)

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.cast, db_index=True)
    invalidated_at = models.DateTimeField(blank=True, null=True)
    invalidated_by = models.CharField(max_length=255, blank=True, default="")
    invalidation_reason = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    objects = VoteQuerySet.as_manager()

    class Meta:
        ordering = ("timestamp", "id")
        constraints = [
            models.UniqueConstraint(
                fields=["member", "position", "election"],
                name="uniq_vote_member_position_election",
            ),
        ]
        indexes = [
            models.Index(fields=["election", "position", "status"], name="vote_el_pos_status"),
            models.Index(fields=["candidate", "status"], name="vote_cand_status"),
        ]

    def __str__(self) -> str:
        return f"vote:{self.election_id}:{self.position_id}:{self.member_id}"

    @override
    def save(self, *args, **kwargs) -> None:
        if not self._state.adding:
            raise VoteImmutableError("Votes cannot be updated; use invalidate_vote().")
        super().save(*args, **kwargs)

    @override
    def delete(self, *args, **kwargs) -> tuple[int, dict[str, int]]:
        raise VoteImmutableError("Votes cannot be deleted.")


class VotingLogQuerySet(models.QuerySet["VotingLog"]):
    def for_election(self, election: Election | int) -> VotingLogQuerySet:
        return self.filter(election=election)

    @override
    def update(self, **kwargs: object) -> int:
        raise AuditLogImmutableError("Voting log entries are append-only.")

    @override
    def delete(self) -> tuple[int, dict[str, int]]:
        raise AuditLogImmutableError("Voting log entries are append-only.")


class VotingLog(models.Model):
    class ActorRole(models.TextChoices):
        superadmin = "superadmin", "Super admin"
        chapter_admin = "chapter-admin", "Chapter admin"
        member = "member", "Member"
        system = "system", "System"

    class Action(models.TextChoices):
        election_created = "election_created", "Election created"
        election_approved = "election_approved", "Election approved"
        election_started = "election_started", "Election started"
        election_closed = "election_closed", "Election closed"
        election_cancelled = "election_cancelled", "Election cancelled"
        election_updated = "election_updated", "Election updated"
        position_created = "position_created", "Position created"
        position_updated = "position_updated", "Position updated"
        candidate_added = "candidate_added", "Candidate added"
        candidate_updated = "candidate_updated", "Candidate updated"
        candidate_withdrawn = "candidate_withdrawn", "Candidate withdrawn"
        vote_link_generated = "vote_link_generated", "Voting link generated"
        vote_link_validated = "vote_link_validated", "Voting link validated"
        vote_link_revoked = "vote_link_revoked", "Voting link revoked"
        vote_cast = "vote_cast", "Vote cast"
        vote_failed = "vote_failed", "Vote failed"
        vote_invalidated = "vote_invalidated", "Vote invalidated"
        results_viewed = "results_viewed", "Results viewed"
        results_exported = "results_exported", "Results exported"
        counters_reconciled = "counters_reconciled", "Counters reconciled"

    actor_id = models.CharField(max_length=255, blank=True, default="")
    actor_email = models.EmailField(blank=True, default="")
    actor_role = models.CharField(max_length=16, choices=ActorRole.choices, default=ActorRole.system)
    action = models.CharField(max_length=32, choices=Action.choices, db_index=True)

    resource_type = models.CharField(max_length=32, blank=True, default="")
    resource_id = models.CharField(max_length=64, blank=True, default="")
    election = models.ForeignKey(
        Election,
        on_delete=models.PROTECT,
        blank=True,
        null=True,
        related_name="voting_logs",
    )
    chapter = models.CharField(max_length=100, blank=True, default="")

    details = models.JSONField(blank=True, default=dict)
    message = models.TextField(blank=True, default="")
    ip = models.GenericIPAddressField(blank=True, null=True)
    user_agent = models.TextField(blank=True, default="")
    success = models.BooleanField(default=True)
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    objects = VotingLogQuerySet.as_manager()

    class Meta:
        ordering = ("created_at", "id")
        indexes = [
            models.Index(fields=["election", "created_at"], name="votinglog_el_at"),
            models.Index(fields=["action", "created_at"], name="votinglog_action_at"),
        ]

    def __str__(self) -> str:
        return f"{self.action}:{self.resource_type}:{self.resource_id}"

    @override
    def save(self, *args, **kwargs) -> None:
        if not self._state.adding:
            raise AuditLogImmutableError("Voting log entries are append-only.")
        super().save(*args, **kwargs)

    @override
    def delete(self, *args, **kwargs) -> tuple[int, dict[str, int]]:
        raise AuditLogImmutableError("Voting log entries are append-only.")
