"""Live tally notifications.

Connected result viewers (websocket fan-out, cache invalidation) subscribe to
these signals. Sending is fire-and-forget: receiver errors are logged and never
reach the voter.
"""

import logging
from collections.abc import Mapping

from django.dispatch import Signal

from voting.models import Election

logger = logging.getLogger(__name__)

# kwargs: election_id, position_id, candidate_id, tally
vote_update = Signal()

# kwargs: election_id, status
election_status = Signal()


def _log_receiver_failures(*, signal_name: str, responses: list[tuple[object, object]], election_id: int) -> None:
    for receiver, response in responses:
        if not isinstance(response, Exception):
            continue
        logger.error(
            "Broadcast receiver failed signal=%s receiver=%r election_id=%s",
            signal_name,
            receiver,
            election_id,
            exc_info=(type(response), response, response.__traceback__),
            extra={
                "event": "chapterhouse.voting.broadcast.receiver_failed",
                "component": "voting",
                "outcome": "error",
                "signal": signal_name,
                "election_id": election_id,
            },
        )


def emit_vote_update(
    election_id: int,
    position_id: int,
    candidate_id: int,
    *,
    tally: Mapping[str, object] | None = None,
) -> None:
    responses = vote_update.send_robust(
        sender=Election,
        election_id=election_id,
        position_id=position_id,
        candidate_id=candidate_id,
        tally=dict(tally or {}),
    )
    _log_receiver_failures(signal_name="vote_update", responses=responses, election_id=election_id)


def emit_election_status(election: Election) -> None:
    responses = election_status.send_robust(
        sender=Election,
        election_id=election.pk,
        status=election.status,
    )
    _log_receiver_failures(signal_name="election_status", responses=responses, election_id=election.pk)
