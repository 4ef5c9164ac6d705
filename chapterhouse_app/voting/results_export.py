from dataclasses import dataclass

from tablib import Dataset

from voting.elections_services import get_election_results
from voting.exceptions import VotingError
from voting.models import Election, VotingLog
from voting.voting_log import AuditActor, record_voting_log

EXPORT_HEADERS = (
    "position",
    "position_order",
    "candidate",
    "votes",
    "percentage",
    "position_total",
    "withdrawn",
    "active",
)

EXPORT_CONTENT_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "json": "application/json",
}


class UnsupportedExportFormatError(VotingError):
    code = "unsupported_format"
    default_message = "Unsupported export format."


@dataclass(frozen=True, slots=True)
class ResultsExport:
    filename: str
    content_type: str
    content: str


def build_results_dataset(results: dict[str, object]) -> Dataset:
    dataset = Dataset(headers=list(EXPORT_HEADERS))
    for entry in results["positions"]:
        position = entry["position"]
        for candidate in entry["candidates"]:
            dataset.append(
                [
                    position["name"],
                    position["order"],
                    candidate["name"],
                    candidate["votesCount"],
                    f"{candidate['votePercentage']:.2f}",
                    position["totalVotes"],
                    "yes" if candidate["isWithdrawn"] else "no",
                    "yes" if candidate["isActive"] else "no",
                    "yes" if candidate["isActive"] else "no",
                ]
            )
    return dataset


def export_election_results(
    *,
    election_id: int,
    fmt: str = "csv",
    actor: AuditActor | None = None,
    ip: str = "",
    user_agent: str = "",
) -> ResultsExport:
    fmt = str(fmt or "csv").strip().lower()
    content_type = EXPORT_CONTENT_TYPES.get(fmt)
    if content_type is None:
        raise UnsupportedExportFormatError(f"Unsupported export format: {fmt}.")

    results = get_election_results(election_id=election_id)
    content = build_results_dataset(results).export(fmt)

    record_voting_log(
        action=VotingLog.Action.results_exported,
        actor=actor,
        resource_type="election",
        resource_id=election_id,
        election=Election.objects.get(pk=election_id),
        details={"format": fmt},
        ip=ip,
        user_agent=user_agent,
    )
    return ResultsExport(
        filename=f"election-{election_id}-results.{fmt}",
        content_type=content_type,
        content=content,
    )
