"""Voting exception classes.

Every ``VotingError`` carries a stable ``code`` and the HTTP status the JSON
views answer with. None of them are retryable: the request itself (or the
link it carries) is the problem. Database errors are left to propagate.
"""


class VotingError(Exception):
    code = "voting_error"
    http_status = 400
    default_message = "The voting request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class ElectionNotFoundError(VotingError):
    code = "election_not_found"
    http_status = 404
    default_message = "Election not found."


class ElectionNotActiveError(VotingError):
    code = "election_not_active"
    default_message = "Election is not active."


class ElectionWindowClosedError(VotingError):
    code = "election_window_closed"
    default_message = "Election is not currently open for voting."


class ElectionStateError(VotingError):
    code = "election_state"
    http_status = 409
    default_message = "Election is not in a state that allows this action."


class ElectionConfigurationError(VotingError):
    code = "election_invalid"
    default_message = "Election details are invalid."


class PositionNotFoundError(VotingError):
    code = "position_not_found"
    http_status = 404
    default_message = "Position not found."


class MemberNotFoundError(VotingError):
    code = "member_not_found"
    http_status = 404
    default_message = "Member not found."


class MemberInactiveError(VotingError):
    code = "member_inactive"
    http_status = 403
    default_message = "Member account is not active."


class MemberNotVerifiedError(VotingError):
    code = "member_not_verified"
    http_status = 403
    default_message = "Member is not verified and cannot vote."


class NoEligibleMembersError(VotingError):
    code = "no_eligible_members"
    http_status = 404
    default_message = "No eligible members found."


class CandidateNotFoundError(VotingError):
    code = "candidate_not_found"
    http_status = 404
    default_message = "Candidate not found."


class CandidateIneligibleError(VotingError):
    code = "candidate_ineligible"
    default_message = "Candidate is not eligible for voting."


class CandidateMismatchError(VotingError):
    code = "candidate_mismatch"
    default_message = "Candidate does not belong to this position."


class DuplicateVoteError(VotingError):
    code = "already_voted"
    http_status = 409
    default_message = "You have already voted for this position."


class LinkInvalidError(VotingError):
    code = "link_invalid"
    http_status = 403
    default_message = "Invalid voting link."


class LinkNotFoundError(VotingError):
    code = "link_not_found"
    http_status = 404
    default_message = "Voting link not found."


class LinkAlreadyUsedError(VotingError):
    code = "link_already_used"
    http_status = 410
    default_message = "Voting link has already been used."


class LinkExpiredError(VotingError):
    code = "link_expired"
    http_status = 410
    default_message = "Voting link has expired."


class LinkRevokedError(VotingError):
    code = "link_revoked"
    http_status = 410
    default_message = "Voting link has been revoked."


class LinkStateError(VotingError):
    code = "link_state"
    http_status = 409
    default_message = "Voting link is not in a state that allows this action."


class TokenInvalidError(VotingError):
    code = "token_invalid"
    default_message = "Voting token signature is invalid."


class TokenMalformedError(VotingError):
    code = "token_malformed"
    default_message = "Voting token is malformed."


class VoteNotFoundError(VotingError):
    code = "vote_not_found"
    http_status = 404
    default_message = "Vote not found."


class VoteStateError(VotingError):
    code = "vote_state"
    http_status = 409
    default_message = "Vote is not in a state that allows this action."


class VoteImmutableError(RuntimeError):
    """Raised when code tries to update or delete a cast vote."""


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to update or delete an audit log entry."""


__all__ = [
    "VotingError",
    "ElectionNotFoundError",
    "ElectionNotActiveError",
    "ElectionWindowClosedError",
    "ElectionStateError",
    "ElectionConfigurationError",
    "PositionNotFoundError",
    "MemberNotFoundError",
    "MemberInactiveError",
    "MemberNotVerifiedError",
    "NoEligibleMembersError",
    "CandidateNotFoundError",
    "CandidateIneligibleError",
    "CandidateMismatchError",
    "DuplicateVoteError",
    "LinkInvalidError",
    "LinkNotFoundError",
    "LinkAlreadyUsedError",
    "LinkExpiredError",
    "LinkRevokedError",
    "LinkStateError",
    "TokenInvalidError",
    "TokenMalformedError",
    "VoteNotFoundError",
    "VoteStateError",
    "VoteImmutableError",
    "AuditLogImmutableError",
]
