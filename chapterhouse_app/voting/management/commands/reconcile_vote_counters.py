from typing import override

from django.core.management.base import BaseCommand, CommandError

from voting.elections_services import reconcile_vote_counters
from voting.exceptions import VotingError
from voting.models import Election
from voting.voting_log import AuditActor


class Command(BaseCommand):
    help = (
        "Compare election, position and candidate vote counters with the vote "
        "ledger and repair any drift."
    )

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--election",
            type=int,
            action="append",
            dest="election_ids",
            help="Election id to reconcile (repeatable). Defaults to active and closed elections.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report drift without rewriting counters.",
        )

    @override
    def handle(self, *args, **options) -> None:
        dry_run: bool = bool(options.get("dry_run"))
        election_ids: list[int] | None = options.get("election_ids")

        if election_ids:
            elections = list(Election.objects.filter(pk__in=election_ids).order_by("id"))
            missing = sorted(set(election_ids) - {election.pk for election in elections})
            if missing:
                raise CommandError(f"Unknown election id(s): {', '.join(str(pk) for pk in missing)}")
        else:
            elections = list(
                Election.objects.filter(status__in=[Election.Status.active, Election.Status.closed]).order_by("id")
            )

        actor = AuditActor.system("reconcile_vote_counters")
        drifted = 0
        for election in elections:
            try:
                report = reconcile_vote_counters(election=election, actor=actor, apply=not dry_run)
            except VotingError as exc:
                raise CommandError(f"election {election.pk}: {exc.message}") from exc

            if not report["has_drift"]:
                self.stdout.write(f"election {election.pk}: counters match the ledger")
                continue

            drifted += 1
            verb = "would repair" if dry_run else "repaired"
            drift = report["drift"]
            self.stdout.write(
                f"election {election.pk}: {verb} "
                f"{len(drift['candidates'])} candidate(s), {len(drift['positions'])} position(s), "
                f"{len(drift['election'])} election counter(s)"
            )

        self.stdout.write(f"Checked {len(elections)} election(s); {drifted} with drift.")
