"""Short-lived cache in front of the results reader.

Results pages poll every few seconds while an election is live. Entries are
keyed by election and dropped whenever a vote or status change is broadcast,
so the TTL only bounds staleness when a broadcast is missed.
"""

from django.conf import settings
from django.core.cache import cache
from django.dispatch import receiver

from voting.broadcast import election_status, vote_update
from voting.elections_services import get_election_results


def results_cache_key(election_id: int) -> str:
    return f"voting:results:{int(election_id)}"


def get_cached_election_results(*, election_id: int) -> dict[str, object]:
    key = results_cache_key(election_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    results = get_election_results(election_id=election_id)
    cache.set(key, results, timeout=settings.VOTING_RESULTS_CACHE_SECONDS)
    return results


def invalidate_election_results(election_id: int) -> None:
    cache.delete(results_cache_key(election_id))


@receiver(vote_update, dispatch_uid="voting.results_cache.vote_update")
def invalidate_on_vote_update(sender: object, election_id: int, **kwargs) -> None:
    invalidate_election_results(election_id)


@receiver(election_status, dispatch_uid="voting.results_cache.election_status")
def invalidate_on_election_status(sender: object, election_id: int, **kwargs) -> None:
    invalidate_election_results(election_id)
