from __future__ import annotations

import datetime
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from voting.broadcast import election_status
from voting.elections_services import (
    add_candidate,
    add_position,
    approve_election,
    cancel_election,
    close_election,
    create_election,
    start_election,
    update_candidate,
    update_election,
    update_position,
    withdraw_candidate,
)
from voting.exceptions import (
    CandidateNotFoundError,
    ElectionConfigurationError,
    ElectionNotFoundError,
    ElectionStateError,
    PositionNotFoundError,
)
from voting.models import Election, VotingLog
from voting.tests.utils_test_data import make_candidate, make_election, make_member, make_position
from voting.voting_log import AuditActor

ORGANIZER = AuditActor(id="organizer", email="organizer@example.org", role=VotingLog.ActorRole.chapter_admin)


class CreateElectionTests(TestCase):
    def setUp(self) -> None:
        self.start = timezone.now() + datetime.timedelta(days=1)
        self.end = self.start + datetime.timedelta(days=7)

    def test_creates_pending_election(self) -> None:
        election = create_election(
            title="  Annual board vote ",
            start_time=self.start,
            end_time=self.end,
            chapter="north",
            actor=ORGANIZER,
        )

        self.assertEqual(election.status, Election.Status.pending)
        self.assertEqual(election.title, "Annual board vote")
        self.assertEqual(election.created_by, "organizer")
        self.assertTrue(election.require_verification)
        self.assertTrue(
            VotingLog.objects.filter(action=VotingLog.Action.election_created, election=election).exists()
        )

    def test_rejects_invalid_configuration(self) -> None:
        cases = {
            "empty title": {"title": " ", "start_time": self.start, "end_time": self.end, "chapter": "north"},
            "end before start": {"title": "Vote", "start_time": self.end, "end_time": self.start, "chapter": "north"},
            "no chapter": {"title": "Vote", "start_time": self.start, "end_time": self.end},
        }
        for label, kwargs in cases.items():
            with self.subTest(case=label):
                with self.assertRaises(ElectionConfigurationError):
                    create_election(**kwargs)

        self.assertFalse(Election.objects.exists())

    def test_national_election_needs_no_chapter(self) -> None:
        election = create_election(title="National vote", start_time=self.start, end_time=self.end, is_national=True)

        self.assertTrue(election.is_national)
        self.assertEqual(election.chapter, "")


class ElectionTransitionTests(TestCase):
    def test_full_lifecycle(self) -> None:
        election = make_election(status=Election.Status.pending)
        make_member()
        make_member()
        make_member(chapter="south")

        approve_election(election=election, actor=ORGANIZER)
        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.approved)
        self.assertEqual(election.approved_by, "organizer")
        self.assertIsNotNone(election.approved_at)

        start_election(election=election, actor=ORGANIZER)
        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.active)
        self.assertEqual(election.total_eligible_voters, 2)

        Election.objects.filter(pk=election.pk).update(total_votes_cast=1)
        close_election(election=election, actor=ORGANIZER)
        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.closed)
        self.assertEqual(election.turnout_percentage, Decimal("50.00"))

        actions = list(VotingLog.objects.for_election(election).values_list("action", flat=True))
        self.assertEqual(
            actions,
            [
                VotingLog.Action.election_approved,
                VotingLog.Action.election_started,
                VotingLog.Action.election_closed,
            ],
        )

    def test_invalid_transitions(self) -> None:
        cases = [
            (Election.Status.pending, start_election),
            (Election.Status.pending, close_election),
            (Election.Status.approved, approve_election),
            (Election.Status.active, start_election),
            (Election.Status.closed, cancel_election),
            (Election.Status.closed, start_election),
            (Election.Status.cancelled, approve_election),
        ]
        for status, transition in cases:
            with self.subTest(status=status, transition=transition.__name__):
                election = make_election(status=status)
                with self.assertRaises(ElectionStateError):
                    transition(election=election)
                election.refresh_from_db()
                self.assertEqual(election.status, status)

    def test_cancel_records_reason(self) -> None:
        election = make_election(status=Election.Status.active)

        cancel_election(election=election, actor=ORGANIZER, reason="Candidate list was wrong")

        entry = VotingLog.objects.get(action=VotingLog.Action.election_cancelled)
        self.assertEqual(entry.details["reason"], "Candidate list was wrong")
        self.assertEqual(entry.details["from_status"], Election.Status.active)

    def test_unknown_election(self) -> None:
        with self.assertRaises(ElectionNotFoundError):
            approve_election(election=999999)

    def test_status_broadcast_after_commit(self) -> None:
        election = make_election(status=Election.Status.approved)
        received: list[dict[str, object]] = []

        def receiver(sender, **kwargs) -> None:
            received.append(kwargs)

        election_status.connect(receiver, weak=False, dispatch_uid="test-election-status")
        self.addCleanup(election_status.disconnect, dispatch_uid="test-election-status")

        with self.captureOnCommitCallbacks(execute=True):
            start_election(election=election)

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["election_id"], election.pk)
        self.assertEqual(received[0]["status"], Election.Status.active)


class BallotEditingTests(TestCase):
    def test_positions_and_candidates_get_next_order(self) -> None:
        election = make_election(status=Election.Status.pending)

        chair = add_position(election=election, name="Chair", actor=ORGANIZER)
        secretary = add_position(election=election, name="Secretary")
        alice = add_candidate(position=chair, name="Alice", email="alice@example.org")
        bob = add_candidate(position=chair, name="Bob")

        self.assertEqual((chair.order, secretary.order), (1, 2))
        self.assertEqual((alice.order, bob.order), (1, 2))
        self.assertEqual(alice.election_id, election.pk)
        self.assertEqual(
            VotingLog.objects.filter(action=VotingLog.Action.candidate_added).count(),
            2,
        )

    def test_duplicate_position_name(self) -> None:
        election = make_election(status=Election.Status.pending)
        add_position(election=election, name="Chair")

        with self.assertRaises(ElectionConfigurationError):
            add_position(election=election, name="Chair")

    def test_ballot_is_frozen_once_active(self) -> None:
        election = make_election(status=Election.Status.active)
        position = make_position(election)

        with self.assertRaises(ElectionStateError):
            add_position(election=election, name="Treasurer")
        with self.assertRaises(ElectionStateError):
            add_candidate(position=position, name="Late entrant")

    def test_withdraw_candidate(self) -> None:
        election = make_election(status=Election.Status.active)
        candidate = make_candidate(make_position(election), name="Alice")

        withdrawn = withdraw_candidate(candidate=candidate, actor=ORGANIZER, reason="Moved away")
        again = withdraw_candidate(candidate=candidate.pk)

        self.assertTrue(withdrawn.is_withdrawn)
        self.assertIsNotNone(withdrawn.withdrawn_at)
        self.assertEqual(again.withdrawn_at, withdrawn.withdrawn_at)
        self.assertEqual(VotingLog.objects.filter(action=VotingLog.Action.candidate_withdrawn).count(), 1)

    def test_withdraw_refused_after_close(self) -> None:
        election = make_election(status=Election.Status.closed)
        candidate = make_candidate(make_position(election), name="Alice")

        with self.assertRaises(ElectionStateError):
            withdraw_candidate(candidate=candidate)


class BallotUpdateTests(TestCase):
    def setUp(self) -> None:
        self.election = make_election(status=Election.Status.approved)
        self.chair = make_position(self.election, name="Chair", order=1)
        self.alice = make_candidate(self.chair, name="Alice", order=1)

    def test_update_candidate_records_changes(self) -> None:
        updated = update_candidate(candidate=self.alice, actor=ORGANIZER, name=" Alice Smith ", bio="Treasurer 2024")

        self.assertEqual(updated.name, "Alice Smith")
        self.assertEqual(updated.bio, "Treasurer 2024")
        entry = VotingLog.objects.get(action=VotingLog.Action.candidate_updated)
        self.assertEqual(entry.actor_id, "organizer")
        self.assertEqual(entry.resource_id, str(self.alice.pk))
        self.assertEqual(entry.details["changes"]["name"], {"from": "Alice", "to": "Alice Smith"})
        self.assertEqual(entry.details["position_id"], self.chair.pk)

    def test_update_candidate_without_changes_is_not_audited(self) -> None:
        update_candidate(candidate=self.alice.pk, name="Alice")

        self.assertFalse(VotingLog.objects.filter(action=VotingLog.Action.candidate_updated).exists())

    def test_candidate_cannot_move_to_another_position(self) -> None:
        treasurer = make_position(self.election, name="Treasurer", order=2)

        for field, value in (("position", treasurer), ("election", make_election()), ("votes_count", 9)):
            with self.subTest(field=field):
                with self.assertRaises(ElectionConfigurationError):
                    update_candidate(candidate=self.alice, **{field: value})

        self.alice.refresh_from_db()
        self.assertEqual(self.alice.position_id, self.chair.pk)
        self.assertEqual(self.alice.votes_count, 0)

    def test_candidate_updates_refused_once_voting_starts(self) -> None:
        for status in (Election.Status.active, Election.Status.closed, Election.Status.cancelled):
            with self.subTest(status=status):
                Election.objects.filter(pk=self.election.pk).update(status=status)
                with self.assertRaises(ElectionStateError):
                    update_candidate(candidate=self.alice, is_active=False)

        self.alice.refresh_from_db()
        self.assertTrue(self.alice.is_active)
        self.assertFalse(VotingLog.objects.filter(action=VotingLog.Action.candidate_updated).exists())

    def test_update_candidate_rejects_blank_name_and_unknown_candidate(self) -> None:
        with self.assertRaises(ElectionConfigurationError):
            update_candidate(candidate=self.alice, name="  ")
        with self.assertRaises(CandidateNotFoundError):
            update_candidate(candidate=self.alice.pk + 1000, name="Ghost")

    def test_update_position(self) -> None:
        updated = update_position(position=self.chair, actor=ORGANIZER, description="Runs meetings", order=3)

        self.assertEqual((updated.description, updated.order), ("Runs meetings", 3))
        entry = VotingLog.objects.get(action=VotingLog.Action.position_updated)
        self.assertEqual(entry.details["changes"]["order"], {"from": 1, "to": 3})

    def test_update_position_refuses_duplicate_names_and_frozen_ballots(self) -> None:
        make_position(self.election, name="Treasurer", order=2)

        with self.assertRaises(ElectionConfigurationError):
            update_position(position=self.chair, name="Treasurer")

        Election.objects.filter(pk=self.election.pk).update(status=Election.Status.active)
        with self.assertRaises(ElectionStateError):
            update_position(position=self.chair, is_active=False)
        with self.assertRaises(PositionNotFoundError):
            update_position(position=self.chair.pk + 1000, name="Ghost")


class UpdateElectionTests(TestCase):
    def test_pending_election_settings_can_change(self) -> None:
        election = make_election(status=Election.Status.pending)
        new_end = election.end_time + datetime.timedelta(days=2)

        updated = update_election(election=election, actor=ORGANIZER, end_time=new_end, require_verification=False)

        self.assertEqual(updated.end_time, new_end)
        self.assertFalse(updated.require_verification)
        entry = VotingLog.objects.get(action=VotingLog.Action.election_updated)
        self.assertEqual(entry.details["changes"]["end_time"]["to"], new_end.isoformat())

    def test_settings_are_frozen_after_approval(self) -> None:
        election = make_election(status=Election.Status.active)

        for field, value in (
            ("end_time", election.end_time + datetime.timedelta(days=1)),
            ("allow_multiple_positions", False),
            ("chapter", "south"),
        ):
            with self.subTest(field=field):
                with self.assertRaises(ElectionStateError):
                    update_election(election=election, **{field: value})

        election.refresh_from_db()
        self.assertTrue(election.allow_multiple_positions)
        self.assertEqual(election.chapter, "north")

    def test_details_can_change_on_a_closed_election(self) -> None:
        election = make_election(status=Election.Status.closed)

        updated = update_election(election=election.pk, actor=ORGANIZER, public_results=True, title="Board 2025")

        self.assertTrue(updated.public_results)
        self.assertEqual(updated.title, "Board 2025")
        self.assertEqual(VotingLog.objects.filter(action=VotingLog.Action.election_updated).count(), 1)

    def test_rejects_invalid_settings(self) -> None:
        election = make_election(status=Election.Status.pending)

        with self.assertRaises(ElectionConfigurationError):
            update_election(election=election, end_time=election.start_time)
        with self.assertRaises(ElectionConfigurationError):
            update_election(election=election, chapter="")
        with self.assertRaises(ElectionConfigurationError):
            update_election(election=election, status=Election.Status.closed)
        with self.assertRaises(ElectionNotFoundError):
            update_election(election=election.pk + 1000, title="Ghost")

        election.refresh_from_db()
        self.assertEqual(election.status, Election.Status.pending)
