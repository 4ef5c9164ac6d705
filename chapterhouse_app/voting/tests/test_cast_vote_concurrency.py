from __future__ import annotations

import threading

from django.db import DatabaseError, connection
from django.test import TransactionTestCase

from voting.elections_services import VoteRequest, cast_vote
from voting.exceptions import DuplicateVoteError, VotingError
from voting.models import Candidate, Election, Position, Vote
from voting.tests.utils_test_data import make_candidate, make_election, make_member, make_position
from voting.voting_links import generate_voting_links


class ConcurrentCastVoteTests(TransactionTestCase):
    # Keeps the migration-seeded email template for the tests that run afterwards.
    serialized_rollback = True

    def setUp(self) -> None:
        super().setUp()
        self.election = make_election(status=Election.Status.active)
        self.chair = make_position(self.election, name="Chair", order=1)
        self.treasurer = make_position(self.election, name="Treasurer", order=2)
        self.candidates = [make_candidate(self.chair, name=name, order=i) for i, name in enumerate("ABCD", start=1)]
        make_candidate(self.treasurer, name="Carol")
        self.voter = make_member()
        self.link = generate_voting_links(election=self.election, send_emails=False).links[0].link

    def _request(self, candidate: Candidate, *, token: str | None) -> VoteRequest:
        return VoteRequest(
            member_id=self.voter.pk,
            candidate_id=candidate.pk,
            position_id=candidate.position_id,
            election_id=self.election.pk,
            token=token,
        )

    def _race(self, requests: list[VoteRequest]) -> list[object]:
        barrier = threading.Barrier(len(requests))
        outcomes: list[object] = [None] * len(requests)

        def worker(index: int, vote_request: VoteRequest) -> None:
            try:
                barrier.wait()
                outcomes[index] = cast_vote(vote_request)
            except (VotingError, DatabaseError) as exc:
                outcomes[index] = exc
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(i, r)) for i, r in enumerate(requests)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
            self.assertFalse(thread.is_alive())

        # SQLite refuses a concurrent writer outright instead of queueing it; that
        # request never reached a voting decision, so it is replayed on its own.
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, DatabaseError):
                try:
                    outcomes[index] = cast_vote(requests[index])
                except VotingError as exc:
                    outcomes[index] = exc
        return outcomes

    def _assert_single_vote(self, outcomes: list[object]) -> None:
        winners = [outcome for outcome in outcomes if isinstance(outcome, Vote)]
        losers = [outcome for outcome in outcomes if not isinstance(outcome, Vote)]

        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), len(outcomes) - 1)
        for loser in losers:
            self.assertIsInstance(loser, DuplicateVoteError)

        votes = Vote.objects.filter(member=self.voter, position=self.chair)
        self.assertEqual(votes.count(), 1)
        self.assertEqual(votes.get().candidate_id, winners[0].candidate_id)

        counts = dict(Candidate.objects.filter(position=self.chair).values_list("id", "votes_count"))
        self.assertEqual(counts[winners[0].candidate_id], 1)
        self.assertEqual(sum(counts.values()), 1)
        self.assertEqual(Position.objects.get(pk=self.chair.pk).total_votes, 1)

        election = Election.objects.get(pk=self.election.pk)
        self.assertEqual(election.total_votes_cast, 1)
        self.assertEqual(election.total_voters, 1)

    def test_same_link_submitted_twice_at_once(self) -> None:
        outcomes = self._race([self._request(candidate, token=self.link.token) for candidate in self.candidates[:2]])

        self._assert_single_vote(outcomes)

    def test_many_concurrent_ballots_for_one_position(self) -> None:
        outcomes = self._race([self._request(candidate, token=None) for candidate in self.candidates])

        self._assert_single_vote(outcomes)
