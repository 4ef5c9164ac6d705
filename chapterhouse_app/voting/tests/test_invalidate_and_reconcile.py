from __future__ import annotations

from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from voting.elections_services import VoteRequest, cast_vote, invalidate_vote, reconcile_vote_counters
from voting.exceptions import VoteNotFoundError, VoteStateError, VotingError
from voting.models import Candidate, Election, Position, Vote, VotingLog
from voting.tests.utils_test_data import make_candidate, make_election, make_member, make_position
from voting.voting_log import AuditActor

AUDITOR = AuditActor(id="auditor", email="auditor@example.org", role=VotingLog.ActorRole.superadmin)


class VotingDataMixin:
    def _setup_votes(self) -> None:
        self.election = make_election(status=Election.Status.active)
        self.chair = make_position(self.election, name="Chair")
        self.alice = make_candidate(self.chair, name="Alice", order=1)
        self.bob = make_candidate(self.chair, name="Bob", order=2)
        self.votes = [
            cast_vote(
                VoteRequest(
                    member_id=make_member().pk,
                    candidate_id=candidate.pk,
                    position_id=self.chair.pk,
                    election_id=self.election.pk,
                )
            )
            for candidate in (self.alice, self.alice, self.bob)
        ]


class InvalidateVoteTests(VotingDataMixin, TestCase):
    def setUp(self) -> None:
        self._setup_votes()

    def test_invalidation_annotates_without_touching_counters(self) -> None:
        vote = invalidate_vote(vote_id=self.votes[0].pk, reason="Duplicate membership", actor=AUDITOR)

        self.assertEqual(vote.status, Vote.Status.invalidated)
        self.assertEqual(vote.invalidated_by, "auditor")
        self.assertEqual(vote.invalidation_reason, "Duplicate membership")
        self.assertIsNotNone(vote.invalidated_at)
        self.assertEqual(vote.candidate_id, self.alice.pk)

        self.alice.refresh_from_db()
        self.assertEqual(self.alice.votes_count, 2)
        self.assertEqual(Vote.objects.candidate_votes(self.alice), 1)
        self.assertEqual(Vote.objects.position_votes(self.chair), 2)

        entry = VotingLog.objects.get(action=VotingLog.Action.vote_invalidated)
        self.assertEqual(entry.details["from_status"], Vote.Status.cast)
        self.assertEqual(entry.actor_role, VotingLog.ActorRole.superadmin)

    def test_disputed_vote_can_later_be_invalidated(self) -> None:
        invalidate_vote(vote_id=self.votes[0].pk, reason="Observer report", actor=AUDITOR, status=Vote.Status.disputed)
        vote = invalidate_vote(vote_id=self.votes[0].pk, reason="Confirmed", actor=AUDITOR)

        self.assertEqual(vote.status, Vote.Status.invalidated)

    def test_rejections(self) -> None:
        with self.assertRaises(VotingError):
            invalidate_vote(vote_id=self.votes[0].pk, reason="  ", actor=AUDITOR)
        with self.assertRaises(VoteNotFoundError):
            invalidate_vote(vote_id=self.votes[-1].pk + 1000, reason="Missing", actor=AUDITOR)

        invalidate_vote(vote_id=self.votes[0].pk, reason="First", actor=AUDITOR)
        with self.assertRaises(VoteStateError):
            invalidate_vote(vote_id=self.votes[0].pk, reason="Again", actor=AUDITOR)
        with self.assertRaises(VoteStateError):
            invalidate_vote(vote_id=self.votes[0].pk, reason="Again", actor=AUDITOR, status=Vote.Status.disputed)

    def test_invalidated_vote_still_blocks_a_second_ballot(self) -> None:
        vote = self.votes[0]
        invalidate_vote(vote_id=vote.pk, reason="Duplicate membership", actor=AUDITOR)

        with self.assertRaises(VotingError) as ctx:
            cast_vote(
                VoteRequest(
                    member_id=vote.member_id,
                    candidate_id=self.bob.pk,
                    position_id=self.chair.pk,
                    election_id=self.election.pk,
                )
            )
        self.assertEqual(ctx.exception.code, "already_voted")


class ReconcileVoteCountersTests(VotingDataMixin, TestCase):
    def setUp(self) -> None:
        self._setup_votes()

    def test_no_drift(self) -> None:
        report = reconcile_vote_counters(election=self.election)

        self.assertFalse(report["has_drift"])
        self.assertFalse(report["applied"])
        self.assertEqual(report["drift"], {"candidates": {}, "positions": {}, "election": {}})
        self.assertTrue(VotingLog.objects.filter(action=VotingLog.Action.counters_reconciled).exists())

    def test_invalidated_votes_are_removed_from_counters(self) -> None:
        invalidate_vote(vote_id=self.votes[0].pk, reason="Duplicate membership", actor=AUDITOR)

        report = reconcile_vote_counters(election=self.election, actor=AUDITOR)

        self.assertTrue(report["has_drift"])
        self.assertTrue(report["applied"])
        self.assertEqual(report["drift"]["candidates"], {str(self.alice.pk): {"stored": 2, "ledger": 1}})
        self.assertEqual(report["drift"]["positions"], {str(self.chair.pk): {"stored": 3, "ledger": 2}})
        self.assertEqual(
            report["drift"]["election"],
            {
                "total_votes_cast": {"stored": 3, "ledger": 2},
                "total_voters": {"stored": 3, "ledger": 2},
            },
        )

        self.alice.refresh_from_db()
        self.chair.refresh_from_db()
        self.election.refresh_from_db()
        self.assertEqual(self.alice.votes_count, 1)
        self.assertEqual(self.chair.total_votes, 2)
        self.assertEqual(self.election.total_votes_cast, 2)
        self.assertEqual(self.election.total_voters, 2)

    def test_dry_run_reports_without_writing(self) -> None:
        Candidate.objects.filter(pk=self.bob.pk).update(votes_count=7)

        report = reconcile_vote_counters(election=self.election, apply=False)

        self.assertTrue(report["has_drift"])
        self.assertFalse(report["applied"])
        self.bob.refresh_from_db()
        self.assertEqual(self.bob.votes_count, 7)


class ReconcileVoteCountersCommandTests(VotingDataMixin, TestCase):
    def setUp(self) -> None:
        self._setup_votes()

    def test_repairs_drift(self) -> None:
        Position.objects.filter(pk=self.chair.pk).update(total_votes=10)
        out = StringIO()

        call_command("reconcile_vote_counters", stdout=out)

        output = out.getvalue()
        self.assertIn(
            f"election {self.election.pk}: repaired 0 candidate(s), 1 position(s), 0 election counter(s)",
            output,
        )
        self.assertIn("Checked 1 election(s); 1 with drift.", output)
        self.chair.refresh_from_db()
        self.assertEqual(self.chair.total_votes, 3)

    def test_dry_run(self) -> None:
        Candidate.objects.filter(pk=self.alice.pk).update(votes_count=0)
        out = StringIO()

        call_command("reconcile_vote_counters", "--dry-run", "--election", str(self.election.pk), stdout=out)

        self.assertIn("would repair 1 candidate(s)", out.getvalue())
        self.alice.refresh_from_db()
        self.assertEqual(self.alice.votes_count, 0)

    def test_clean_election(self) -> None:
        out = StringIO()

        call_command("reconcile_vote_counters", "--election", str(self.election.pk), stdout=out)

        self.assertIn(f"election {self.election.pk}: counters match the ledger", out.getvalue())

    def test_unknown_election(self) -> None:
        with self.assertRaisesMessage(CommandError, "Unknown election id(s): 424242"):
            call_command("reconcile_vote_counters", "--election", "424242")

    def test_skips_pending_elections_by_default(self) -> None:
        make_election(status=Election.Status.pending)
        out = StringIO()

        call_command("reconcile_vote_counters", stdout=out)

        self.assertIn("Checked 1 election(s); 0 with drift.", out.getvalue())
