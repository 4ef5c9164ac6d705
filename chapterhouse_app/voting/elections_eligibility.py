from collections.abc import Iterable

from django.db.models import QuerySet

from voting.exceptions import MemberInactiveError, MemberNotVerifiedError
from voting.models import Election, Member


def eligible_members_queryset(*, election: Election) -> QuerySet[Member]:
    """Members who may receive a voting link for the election.

    Active accounts only; chapter elections are restricted to their chapter
    while national elections admit every chapter; verification is required
    when the election asks for it.
    """
    qs = Member.objects.filter(is_active=True)
    if not election.is_national:
        qs = qs.filter(chapter=election.chapter)
    if election.require_verification:
        qs = qs.filter(is_verified=True)
    return qs.order_by("id")


def eligible_members(*, election: Election, member_ids: Iterable[int] | None = None) -> list[Member]:
    qs = eligible_members_queryset(election=election)
    if member_ids is not None:
        wanted = {int(member_id) for member_id in member_ids}
        qs = qs.filter(pk__in=wanted)
    return list(qs)


def ensure_member_can_vote(*, election: Election, member: Member) -> None:
    if not member.is_active:
        raise MemberInactiveError()
    if election.require_verification and not member.is_verified:
        raise MemberNotVerifiedError()
