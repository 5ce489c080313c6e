from __future__ import annotations

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models
from django.db.models import F, Q


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Center",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=32, unique=True)),
                ("name", models.CharField(max_length=255)),
            ],
            options={"ordering": ("name",)},
        ),
        migrations.CreateModel(
            name="Site",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                (
                    "center",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sites",
                        to="voting.center",
                    ),
                ),
            ],
            options={
                "ordering": ("center_id", "name"),
                "constraints": [
                    models.UniqueConstraint(fields=("center", "name"), name="uniq_site_center_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Group",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("number", models.CharField(max_length=32, unique=True)),
                ("program_name", models.CharField(blank=True, default="", max_length=255)),
                ("slot", models.CharField(blank=True, db_index=True, default="", max_length=32)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "center",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="groups",
                        to="voting.center",
                    ),
                ),
                (
                    "site",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="groups",
                        to="voting.site",
                    ),
                ),
            ],
            options={"ordering": ("number",)},
        ),
        migrations.CreateModel(
            name="Person",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "document_type",
                    models.CharField(
                        choices=[
                            ("CC", "Citizenship card"),
                            ("TI", "Identity card"),
                            ("CE", "Foreigner ID"),
                            ("PA", "Passport"),
                            ("PEP", "Special permit"),
                        ],
                        default="CC",
                        max_length=8,
                    ),
                ),
                ("document_number", models.CharField(max_length=32, unique=True)),
                ("first_name", models.CharField(max_length=150)),
                ("last_name", models.CharField(blank=True, default="", max_length=150)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "group",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="members",
                        to="voting.group",
                    ),
                ),
            ],
            options={
                "ordering": ("last_name", "first_name"),
                "constraints": [
                    models.UniqueConstraint(fields=("document_type", "document_number"), name="uniq_person_document"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Election",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=150)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "election_type",
                    models.CharField(
                        choices=[
                            ("group_representative", "Group representative"),
                            ("site_leader", "Site leader"),
                            ("center_representative", "Center representative"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("configuracion", "Configuring"),
                            ("activa", "Active"),
                            ("finalizada", "Finalized"),
                            ("cancelada", "Cancelled"),
                        ],
                        db_index=True,
                        default="configuracion",
                        max_length=16,
                    ),
                ),
                ("start_datetime", models.DateTimeField()),
                ("end_datetime", models.DateTimeField()),
                ("slot", models.CharField(blank=True, default="", max_length=32)),
                ("sibling_key", models.CharField(blank=True, db_index=True, default="", editable=False, max_length=255)),
                ("allows_blank_vote", models.BooleanField(default=True)),
                ("enabled_voter_count", models.PositiveIntegerField(default=0)),
                ("votes_cast_count", models.PositiveIntegerField(default=0)),
                ("created_by", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "center",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="elections",
                        to="voting.center",
                    ),
                ),
                (
                    "site",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="elections",
                        to="voting.site",
                    ),
                ),
                (
                    "group",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="elections",
                        to="voting.group",
                    ),
                ),
            ],
            options={
                "ordering": ("-start_datetime", "id"),
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            (Q(election_type="center_representative") & ~Q(slot=""))
                            | (~Q(election_type="center_representative") & Q(slot=""))
                        ),
                        name="chk_election_slot_iff_center_representative",
                    ),
                    models.CheckConstraint(
                        condition=Q(start_datetime__lt=F("end_datetime")),
                        name="chk_election_window_ordered",
                    ),
                    models.UniqueConstraint(
                        condition=~Q(sibling_key=""),
                        fields=("sibling_key", "slot"),
                        name="uniq_election_sibling_slot",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Candidate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("list_number", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("validated", "Validated"), ("rejected", "Rejected")],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("proposals", models.TextField(blank=True, default="")),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("validated_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="candidates",
                        to="voting.election",
                    ),
                ),
                (
                    "person",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="candidacies",
                        to="voting.person",
                    ),
                ),
            ],
            options={
                "ordering": ("election_id", "list_number"),
                "constraints": [
                    models.UniqueConstraint(
                        fields=("election", "list_number"),
                        name="uniq_candidate_election_list_number",
                    ),
                    models.UniqueConstraint(fields=("election", "person"), name="uniq_candidate_election_person"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EnabledVoter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enabled_voters",
                        to="voting.election",
                    ),
                ),
                (
                    "person",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enabled_for",
                        to="voting.person",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("election", "person"), name="uniq_enabledvoter_election_person"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Vote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("scope_key", models.CharField(max_length=255)),
                ("verification_hash", models.CharField(max_length=64, unique=True)),
                ("cast_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="votes",
                        to="voting.election",
                    ),
                ),
                (
                    "candidate",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.RESTRICT,
                        related_name="votes",
                        to="voting.candidate",
                    ),
                ),
                (
                    "person",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="voting.person",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("election", "person"), name="uniq_vote_election_person"),
                    models.UniqueConstraint(fields=("scope_key", "person"), name="uniq_vote_scope_person"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLogEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("event_type", models.CharField(max_length=64)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("actor", models.CharField(blank=True, default="", max_length=255)),
                (
                    "election",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="audit_log",
                        to="voting.election",
                    ),
                ),
            ],
            options={
                "ordering": ("timestamp", "id"),
                "indexes": [
                    models.Index(fields=["election", "timestamp"], name="audit_election_ts"),
                    models.Index(fields=["event_type"], name="audit_event_type"),
                ],
            },
        ),
    ]
