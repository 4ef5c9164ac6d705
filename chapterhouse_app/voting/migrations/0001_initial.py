from __future__ import annotations

import decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Member",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(blank=True, default="", max_length=100)),
                ("chapter", models.CharField(blank=True, db_index=True, default="", max_length=100)),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("member", "Member"),
                            ("chapter-admin", "Chapter admin"),
                            ("superadmin", "Super admin"),
                        ],
                        default="member",
                        max_length=16,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("is_verified", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ("last_name", "first_name", "id"),
            },
        ),
        migrations.CreateModel(
            name="Election",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True, default="", max_length=2000)),
                ("chapter", models.CharField(blank=True, db_index=True, default="", max_length=100)),
                ("is_national", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("active", "Active"),
                            ("closed", "Closed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("start_time", models.DateTimeField()),
                ("end_time", models.DateTimeField()),
                ("created_by", models.CharField(blank=True, default="", max_length=255)),
                ("approved_by", models.CharField(blank=True, default="", max_length=255)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("require_verification", models.BooleanField(default=True)),
                ("allow_multiple_positions", models.BooleanField(default=True)),
                ("public_results", models.BooleanField(default=False)),
                ("total_eligible_voters", models.PositiveIntegerField(default=0)),
                ("total_votes_cast", models.PositiveIntegerField(default=0)),
                ("total_voters", models.PositiveIntegerField(default=0)),
                (
                    "turnout_percentage",
                    models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=5),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ("-start_time", "id"),
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("end_time__gt", models.F("start_time"))),
                        name="election_end_after_start",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Position",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True, default="", max_length=500)),
                ("order", models.PositiveIntegerField(default=0)),
                ("total_votes", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="positions",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "ordering": ("order", "id"),
                "constraints": [
                    models.UniqueConstraint(fields=("election", "name"), name="uniq_position_election_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Candidate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("bio", models.TextField(blank=True, default="")),
                ("manifesto", models.TextField(blank=True, default="")),
                ("photo_url", models.URLField(blank=True, default="", max_length=2048)),
                ("order", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_withdrawn", models.BooleanField(default=False)),
                ("withdrawn_at", models.DateTimeField(blank=True, null=True)),
                ("votes_count", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="candidates",
                        to="voting.election",
                    ),
                ),
                (
                    "position",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="candidates",
                        to="voting.position",
                    ),
                ),
            ],
            options={
                "ordering": ("order", "id"),
            },
        ),
        migrations.CreateModel(
            name="VotingLink",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("member_email", models.EmailField(max_length=254)),
                ("chapter", models.CharField(blank=True, default="", max_length=100)),
                ("token", models.CharField(max_length=512, unique=True)),
                ("token_hash", models.CharField(max_length=64, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("used", "Used"),
                            ("expired", "Expired"),
                            ("revoked", "Revoked"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("used_at", models.DateTimeField(blank=True, null=True)),
                ("used_for_positions", models.JSONField(blank=True, default=list)),
                ("expires_at", models.DateTimeField()),
                ("generated_by", models.CharField(blank=True, default="", max_length=255)),
                ("generated_at", models.DateTimeField(auto_now_add=True)),
                ("email_sent", models.BooleanField(default=False)),
                ("email_sent_at", models.DateTimeField(blank=True, null=True)),
                ("accessed_at", models.DateTimeField(blank=True, null=True)),
                ("access_count", models.PositiveIntegerField(default=0)),
                ("last_access_ip", models.GenericIPAddressField(blank=True, null=True)),
                ("revoked_at", models.DateTimeField(blank=True, null=True)),
                ("revoked_by", models.CharField(blank=True, default="", max_length=255)),
                ("revocation_reason", models.TextField(blank=True, default="")),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voting_links",
                        to="voting.election",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voting_links",
                        to="voting.member",
                    ),
                ),
            ],
            options={
                "ordering": ("-generated_at", "-id"),
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["pending", "sent"])),
                        fields=("member", "election"),
                        name="uniq_votinglink_open_member_election",
                    ),
                ],
                "indexes": [
                    models.Index(fields=["election", "status"], name="votinglink_el_status"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Vote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("member_email", models.EmailField(max_length=254)),
                ("member_name", models.CharField(blank=True, default="", max_length=200)),
                ("chapter", models.CharField(blank=True, default="", max_length=100)),
                ("link_token", models.CharField(blank=True, default="", max_length=512)),
                ("link_token_hash", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True, default="")),
                ("verified", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("cast", "Cast"),
                            ("disputed", "Disputed"),
                            ("invalidated", "Invalidated"),
                        ],
                        db_index=True,
                        default="cast",
                        max_length=16,
                    ),
                ),
                ("invalidated_at", models.DateTimeField(blank=True, null=True)),
                ("invalidated_by", models.CharField(blank=True, default="", max_length=255)),
                ("invalidation_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "candidate",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="votes",
                        to="voting.candidate",
                    ),
                ),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="votes",
                        to="voting.election",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="votes",
                        to="voting.member",
                    ),
                ),
                (
                    "position",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="votes",
                        to="voting.position",
                    ),
                ),
            ],
            options={
                "ordering": ("timestamp", "id"),
                "constraints": [
                    models.UniqueConstraint(
                        fields=("member", "position", "election"),
                        name="uniq_vote_member_position_election",
                    ),
                ],
                "indexes": [
                    models.Index(fields=["election", "position", "status"], name="vote_el_pos_status"),
                    models.Index(fields=["candidate", "status"], name="vote_cand_status"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VotingLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("actor_id", models.CharField(blank=True, default="", max_length=255)),
                ("actor_email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "actor_role",
                    models.CharField(
                        choices=[
                            ("superadmin", "Super admin"),
                            ("chapter-admin", "Chapter admin"),
                            ("member", "Member"),
                            ("system", "System"),
                        ],
                        default="system",
                        max_length=16,
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("election_created", "Election created"),
                            ("election_approved", "Election approved"),
                            ("election_started", "Election started"),
                            ("election_closed", "Election closed"),
                            ("election_cancelled", "Election cancelled"),
                            ("position_created", "Position created"),
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
                ("resource_type", models.CharField(blank=True, default="", max_length=32)),
                ("resource_id", models.CharField(blank=True, default="", max_length=64)),
                ("chapter", models.CharField(blank=True, default="", max_length=100)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("message", models.TextField(blank=True, default="")),
                ("ip", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True, default="")),
                ("success", models.BooleanField(default=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voting_logs",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "ordering": ("created_at", "id"),
                "indexes": [
                    models.Index(fields=["election", "created_at"], name="votinglog_el_at"),
                    models.Index(fields=["action", "created_at"], name="votinglog_action_at"),
                ],
            },
        ),
    ]
