from __future__ import annotations

from django.test import TestCase
from django.utils import timezone

from voting.elections_services import VoteRequest, cast_vote
from voting.exceptions import AuditLogImmutableError, VoteImmutableError
from voting.models import Election, Vote, VotingLog
from voting.tests.utils_test_data import make_candidate, make_election, make_member, make_position
from voting.voting_log import record_voting_log


class VoteLedgerImmutabilityTests(TestCase):
    def setUp(self) -> None:
        election = make_election(status=Election.Status.active)
        position = make_position(election)
        self.candidate = make_candidate(position, name="Alice")
        self.other = make_candidate(position, name="Bob", order=2)
        member = make_member()
        self.vote = cast_vote(
            VoteRequest(
                member_id=member.pk,
                candidate_id=self.candidate.pk,
                position_id=position.pk,
                election_id=election.pk,
            )
        )

    def test_saving_existing_vote_is_refused(self) -> None:
        self.vote.candidate = self.other

        with self.assertRaises(VoteImmutableError):
            self.vote.save()

        self.vote.refresh_from_db()
        self.assertEqual(self.vote.candidate_id, self.candidate.pk)

    def test_deleting_vote_is_refused(self) -> None:
        with self.assertRaises(VoteImmutableError):
            self.vote.delete()

        self.assertTrue(Vote.objects.filter(pk=self.vote.pk).exists())

    def test_bulk_writes_are_refused(self) -> None:
        with self.assertRaises(VoteImmutableError):
            Vote.objects.filter(pk=self.vote.pk).update(candidate=self.other)
        with self.assertRaises(VoteImmutableError):
            Vote.objects.filter(pk=self.vote.pk).delete()

        self.vote.refresh_from_db()
        self.assertEqual(self.vote.candidate_id, self.candidate.pk)

    def test_annotate_invalidation_only_touches_status_metadata(self) -> None:
        now = timezone.now()

        updated = Vote.objects.filter(pk=self.vote.pk).annotate_invalidation(
            status=Vote.Status.disputed,
            invalidated_by="auditor",
            reason="Reported by observer",
            invalidated_at=now,
        )

        self.assertEqual(updated, 1)
        self.vote.refresh_from_db()
        self.assertEqual(self.vote.status, Vote.Status.disputed)
        self.assertEqual(self.vote.invalidated_by, "auditor")
        self.assertEqual(self.vote.candidate_id, self.candidate.pk)

    def test_annotate_invalidation_rejects_cast_status(self) -> None:
        with self.assertRaises(ValueError):
            Vote.objects.filter(pk=self.vote.pk).annotate_invalidation(
                status=Vote.Status.cast,
                invalidated_by="auditor",
                reason="undo",
                invalidated_at=timezone.now(),
            )


class VotingLogImmutabilityTests(TestCase):
    def setUp(self) -> None:
        self.entry = record_voting_log(action=VotingLog.Action.results_viewed, message="viewed")

    def test_entries_are_append_only(self) -> None:
        self.entry.message = "rewritten"

        with self.assertRaises(AuditLogImmutableError):
            self.entry.save()
        with self.assertRaises(AuditLogImmutableError):
            self.entry.delete()
        with self.assertRaises(AuditLogImmutableError):
            VotingLog.objects.filter(pk=self.entry.pk).update(message="rewritten")
        with self.assertRaises(AuditLogImmutableError):
            VotingLog.objects.all().delete()

        self.entry.refresh_from_db()
        self.assertEqual(self.entry.message, "viewed")
