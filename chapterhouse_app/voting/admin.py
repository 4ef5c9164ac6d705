from django.contrib import admin, messages
from django.db.models import QuerySet
from django.forms import ModelForm
from django.http import HttpRequest

from voting.elections_services import (
    BALLOT_EDITABLE_STATUSES,
    CANDIDATE_EDITABLE_FIELDS,
    ELECTION_DETAIL_FIELDS,
    ELECTION_SETTINGS_FIELDS,
    POSITION_EDITABLE_FIELDS,
    add_candidate,
    add_position,
    ballot_is_editable,
    create_election,
    update_candidate,
    update_election,
    update_position,
    withdraw_candidate,
)
from voting.exceptions import VotingError
from voting.models import Candidate, Election, Member, Position, Vote, VotingLink, VotingLog
from voting.voting_log import AuditActor


def _changed_fields(form: ModelForm, allowed: frozenset[str]) -> dict[str, object]:
    return {name: form.cleaned_data[name] for name in form.changed_data if name in allowed}


def _reload(obj: Election | Position | Candidate, saved: Election | Position | Candidate) -> None:
    # The admin keeps working with its own instance after save_model.
    obj.pk = saved.pk
    obj._state.adding = False
    obj.refresh_from_db()


class ReadOnlyAdmin(admin.ModelAdmin):
    """Browse-only admin for ledger and audit rows."""

    def has_add_permission(self, request: HttpRequest) -> bool:
        return False

    def has_change_permission(self, request: HttpRequest, obj: object | None = None) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj: object | None = None) -> bool:
        return False


class BallotAdmin(admin.ModelAdmin):
    """Positions and candidates: writes go through the audited ballot services."""

    def has_change_permission(self, request: HttpRequest, obj: Position | Candidate | None = None) -> bool:
        if obj is not None and not ballot_is_editable(obj.election):
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request: HttpRequest, obj: object | None = None) -> bool:
        return False

    def get_readonly_fields(self, request: HttpRequest, obj: Position | Candidate | None = None) -> tuple[str, ...]:
        readonly = tuple(super().get_readonly_fields(request, obj))
        if obj is None:
            return readonly
        return ("election", *readonly)


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
    list_display = ("email", "first_name", "last_name", "chapter", "role", "is_active", "is_verified")
    list_filter = ("chapter", "role", "is_active", "is_verified")
    search_fields = ("email", "first_name", "last_name")


class PositionInline(admin.TabularInline):
    model = Position
    extra = 0
    fields = ("name", "order", "is_active", "total_votes")
    readonly_fields = fields
    show_change_link = True

    def has_add_permission(self, request: HttpRequest, obj: Election | None = None) -> bool:
        return False

    def has_change_permission(self, request: HttpRequest, obj: Election | None = None) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj: Election | None = None) -> bool:
        return False


@admin.register(Election)
class ElectionAdmin(admin.ModelAdmin):
    list_display = ("title", "chapter", "is_national", "status", "start_time", "end_time", "total_votes_cast")
    list_filter = ("status", "is_national", "chapter")
    search_fields = ("title",)
    inlines = (PositionInline,)
    # Status moves through the lifecycle endpoints so every transition is audited.
    readonly_fields = (
        "status",
        "approved_by",
        "approved_at",
        "total_eligible_voters",
        "total_votes_cast",
        "total_voters",
        "turnout_percentage",
        "created_by",
        "created_at",
        "updated_at",
    )

    def get_readonly_fields(self, request: HttpRequest, obj: Election | None = None) -> tuple[str, ...]:
        readonly = tuple(super().get_readonly_fields(request, obj))
        if obj is not None and obj.status != Election.Status.pending:
            readonly += tuple(sorted(ELECTION_SETTINGS_FIELDS))
        return readonly

    def has_delete_permission(self, request: HttpRequest, obj: Election | None = None) -> bool:
        return False

    def save_model(self, request: HttpRequest, obj: Election, form: ModelForm, change: bool) -> None:
        actor = AuditActor.for_user(request.user)
        if change:
            allowed = ELECTION_SETTINGS_FIELDS | ELECTION_DETAIL_FIELDS
            update_election(election=obj.pk, actor=actor, **_changed_fields(form, allowed))
            obj.refresh_from_db()
            return

        data = form.cleaned_data
        saved = create_election(
            title=data["title"],
            description=data.get("description", ""),
            chapter=data.get("chapter", ""),
            is_national=data.get("is_national", False),
            start_time=data["start_time"],
            end_time=data["end_time"],
            require_verification=data.get("require_verification", True),
            allow_multiple_positions=data.get("allow_multiple_positions", True),
            public_results=data.get("public_results", False),
            notes=data.get("notes", ""),
            actor=actor,
        )
        _reload(obj, saved)


@admin.register(Position)
class PositionAdmin(BallotAdmin):
    list_display = ("name", "election", "order", "is_active", "total_votes")
    list_filter = ("is_active",)
    search_fields = ("name",)
    fields = ("election", "name", "description", "order", "is_active", "total_votes")
    readonly_fields = ("total_votes",)

    def formfield_for_foreignkey(self, db_field, request: HttpRequest, **kwargs):
        if db_field.name == "election":
            kwargs["queryset"] = Election.objects.filter(status__in=BALLOT_EDITABLE_STATUSES)
        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    def save_model(self, request: HttpRequest, obj: Position, form: ModelForm, change: bool) -> None:
        actor = AuditActor.for_user(request.user)
        if change:
            update_position(position=obj.pk, actor=actor, **_changed_fields(form, POSITION_EDITABLE_FIELDS))
            obj.refresh_from_db()
            return

        data = form.cleaned_data
        saved = add_position(
            election=data["election"],
            name=data["name"],
            description=data.get("description", ""),
            order=data.get("order") or None,
            actor=actor,
        )
        if not data.get("is_active", True):
            saved = update_position(position=saved, actor=actor, is_active=False)
        _reload(obj, saved)


@admin.register(Candidate)
class CandidateAdmin(BallotAdmin):
    list_display = ("name", "position", "election", "is_active", "is_withdrawn", "votes_count")
    list_filter = ("is_active", "is_withdrawn")
    search_fields = ("name", "email")
    fields = (
        "election",
        "position",
        "name",
        "email",
        "bio",
        "manifesto",
        "photo_url",
        "order",
        "is_active",
        "is_withdrawn",
        "withdrawn_at",
        "votes_count",
    )
    readonly_fields = ("is_withdrawn", "withdrawn_at", "votes_count")
    actions = ("withdraw_candidates",)

    def get_fields(self, request: HttpRequest, obj: Candidate | None = None) -> tuple[str, ...]:
        fields = tuple(super().get_fields(request, obj))
        if obj is None:
            # New candidates take the election of their position.
            return tuple(name for name in fields if name != "election")
        return fields

    def get_readonly_fields(self, request: HttpRequest, obj: Candidate | None = None) -> tuple[str, ...]:
        readonly = tuple(super().get_readonly_fields(request, obj))
        if obj is None:
            return readonly
        return ("position", *readonly)

    def formfield_for_foreignkey(self, db_field, request: HttpRequest, **kwargs):
        if db_field.name == "position":
            kwargs["queryset"] = Position.objects.select_related("election").filter(
                election__status__in=BALLOT_EDITABLE_STATUSES
            )
        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    def save_model(self, request: HttpRequest, obj: Candidate, form: ModelForm, change: bool) -> None:
        actor = AuditActor.for_user(request.user)
        if change:
            update_candidate(candidate=obj.pk, actor=actor, **_changed_fields(form, CANDIDATE_EDITABLE_FIELDS))
            obj.refresh_from_db()
            return

        data = form.cleaned_data
        saved = add_candidate(
            position=data["position"],
            name=data["name"],
            email=data.get("email", ""),
            bio=data.get("bio", ""),
            manifesto=data.get("manifesto", ""),
            photo_url=data.get("photo_url", ""),
            order=data.get("order") or None,
            actor=actor,
        )
        if not data.get("is_active", True):
            saved = update_candidate(candidate=saved, actor=actor, is_active=False)
        _reload(obj, saved)

    def has_withdraw_permission(self, request: HttpRequest) -> bool:
        return request.user.has_perm("voting.change_candidate")

    @admin.action(description="Withdraw selected candidates", permissions=["withdraw"])
    def withdraw_candidates(self, request: HttpRequest, queryset: QuerySet[Candidate]) -> None:
        actor = AuditActor.for_user(request.user)
        withdrawn = 0
        for candidate in queryset:
            try:
                withdraw_candidate(candidate=candidate, actor=actor, reason="Withdrawn in admin")
            except VotingError as exc:
                self.message_user(request, f"{candidate.name}: {exc.message}", level=messages.ERROR)
                continue
            withdrawn += 1
        if withdrawn:
            self.message_user(request, f"Withdrew {withdrawn} candidate(s).", level=messages.SUCCESS)


@admin.register(VotingLink)
class VotingLinkAdmin(ReadOnlyAdmin):
    list_display = ("member_email", "election", "status", "expires_at", "email_sent", "access_count")
    list_filter = ("status", "email_sent")
    search_fields = ("member_email",)
    exclude = ("token",)


@admin.register(Vote)
class VoteAdmin(ReadOnlyAdmin):
    list_display = ("member_email", "position", "candidate", "election", "status", "timestamp")
    list_filter = ("status", "verified")
    search_fields = ("member_email",)
    exclude = ("link_token",)


@admin.register(VotingLog)
class VotingLogAdmin(ReadOnlyAdmin):
    list_display = ("created_at", "action", "actor_id", "actor_role", "election", "success")
    list_filter = ("action", "actor_role", "success")
    search_fields = ("actor_id", "actor_email", "resource_id")
