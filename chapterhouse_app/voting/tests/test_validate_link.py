from __future__ import annotations

import datetime

from django.test import TestCase
from django.utils import timezone

from voting.elections_services import VoteRequest, cast_vote, validate_voting_link
from voting.exceptions import (
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkNotFoundError,
    LinkRevokedError,
    TokenInvalidError,
    TokenMalformedError,
)
from voting.models import Election, VotingLink, VotingLog
from voting.tests.utils_test_data import make_candidate, make_election, make_member, make_position
from voting.tokens import generate_voting_token
from voting.voting_links import generate_voting_links, revoke_voting_link


class ValidateVotingLinkTests(TestCase):
    def setUp(self) -> None:
        self.election = make_election(status=Election.Status.active, title="Spring vote")
        self.chair = make_position(self.election, name="Chair", order=1)
        self.treasurer = make_position(self.election, name="Treasurer", order=2)
        self.alice = make_candidate(self.chair, name="Alice", order=1)
        self.withdrawn = make_candidate(self.chair, name="Bob", order=2, is_withdrawn=True)
        self.carol = make_candidate(self.treasurer, name="Carol", order=1)
        self.voter = make_member()
        self.link = generate_voting_links(election=self.election, send_emails=False).links[0].link

    def test_returns_ballot_and_records_access(self) -> None:
        ballot = validate_voting_link(token=self.link.token, ip="192.0.2.10", user_agent="browser")

        self.assertEqual(ballot["election"]["id"], self.election.pk)
        self.assertEqual(ballot["election"]["title"], "Spring vote")
        self.assertTrue(ballot["election"]["isOpen"])
        self.assertEqual(ballot["memberId"], self.voter.pk)
        self.assertEqual(ballot["expiresAt"], self.link.expires_at.isoformat())
        self.assertEqual([p["name"] for p in ballot["positions"]], ["Chair", "Treasurer"])
        self.assertEqual([c["name"] for c in ballot["positions"][0]["candidates"]], ["Alice"])
        self.assertEqual([p["hasVoted"] for p in ballot["positions"]], [False, False])

        self.link.refresh_from_db()
        self.assertEqual(self.link.access_count, 1)
        self.assertEqual(self.link.last_access_ip, "192.0.2.10")
        self.assertIsNotNone(self.link.accessed_at)

        entry = VotingLog.objects.get(action=VotingLog.Action.vote_link_validated)
        self.assertTrue(entry.success)
        self.assertEqual(entry.details["access_count"], 1)

    def test_has_voted_flags_follow_the_ledger(self) -> None:
        cast_vote(
            VoteRequest(
                member_id=self.voter.pk,
                candidate_id=self.alice.pk,
                position_id=self.chair.pk,
                election_id=self.election.pk,
                token=self.link.token,
            )
        )

        ballot = validate_voting_link(token=self.link.token)

        self.assertEqual([p["hasVoted"] for p in ballot["positions"]], [True, False])

    def test_access_count_increments(self) -> None:
        validate_voting_link(token=self.link.token)
        validate_voting_link(token=self.link.token)

        self.link.refresh_from_db()
        self.assertEqual(self.link.access_count, 2)

    def test_member_id_must_match_token(self) -> None:
        with self.assertRaises(LinkInvalidError):
            validate_voting_link(token=self.link.token, member_id=self.voter.pk + 1)

        self.assertTrue(validate_voting_link(token=self.link.token, member_id=self.voter.pk))

    def test_signed_token_without_link_row(self) -> None:
        token = generate_voting_token(member_id=self.voter.pk, election_id=self.election.pk).token

        with self.assertRaises(LinkNotFoundError):
            validate_voting_link(token=token)

        entry = VotingLog.objects.get(action=VotingLog.Action.vote_link_validated)
        self.assertFalse(entry.success)
        self.assertEqual(entry.details["code"], "link_not_found")
        self.assertIsNone(entry.election_id)

    def test_bad_tokens(self) -> None:
        with self.assertRaises(TokenMalformedError):
            validate_voting_link(token="garbage")
        with self.assertRaises(TokenInvalidError):
            validate_voting_link(token=self.link.token[:-3] + "abc")

    def test_terminal_links(self) -> None:
        cases = {
            VotingLink.Status.revoked: LinkRevokedError,
            VotingLink.Status.used: LinkAlreadyUsedError,
            VotingLink.Status.expired: LinkExpiredError,
        }
        for status, error in cases.items():
            with self.subTest(status=status):
                VotingLink.objects.filter(pk=self.link.pk).update(status=status)
                with self.assertRaises(error):
                    validate_voting_link(token=self.link.token)

        self.link.refresh_from_db()
        self.assertEqual(self.link.access_count, 0)
        failed = VotingLog.objects.filter(action=VotingLog.Action.vote_link_validated, success=False)
        self.assertEqual(failed.count(), 3)
        self.assertTrue(all(entry.election_id == self.election.pk for entry in failed))

    def test_revoked_link_via_service(self) -> None:
        revoke_voting_link(link=self.link, reason="Left the chapter")

        with self.assertRaises(LinkRevokedError):
            validate_voting_link(token=self.link.token)

    def test_link_past_expiry_is_marked_expired(self) -> None:
        VotingLink.objects.filter(pk=self.link.pk).update(expires_at=timezone.now() - datetime.timedelta(seconds=30))

        with self.assertRaises(LinkExpiredError):
            validate_voting_link(token=self.link.token)

        self.link.refresh_from_db()
        self.assertEqual(self.link.status, VotingLink.Status.expired)
