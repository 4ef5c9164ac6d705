from __future__ import annotations

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("voting", "0002_create_voting_link_email_template"),
    ]

    operations = [
        migrations.AlterField(
            model_name="votinglog",
            name="action",
            field=models.CharField(
                choices=[
                    ("election_created", "Election created"),
                    ("election_approved", "Election approved"),
                    ("election_started", "Election started"),
                    ("election_closed", "Election closed"),
                    ("election_cancelled", "Election cancelled"),
                    ("election_updated", "Election updated"),
                    ("position_created", "Position created"),
                    ("position_updated", "Position updated"),
                    ("candidate_added", "Candidate added"),
                    ("candidate_updated", "Candidate updated"),
                    ("candidate_withdrawn", "Candidate withdrawn"),
                    ("vote_link_generated", "Voting link generated"),
                    ("vote_link_validated", "Voting link validated"),
                    ("vote_link_revoked", "Voting link revoked"),
                    ("vote_cast", "Vote cast"),
                    ("vote_failed", "Vote failed"),
                    ("vote_invalidated", "Vote invalidated"),
                    ("results_viewed", "Results viewed"),
                    ("results_exported", "Results exported"),
                    ("counters_reconciled", "Counters reconciled"),
                ],
                db_index=True,
                max_length=32,
            ),
        ),
    ]
