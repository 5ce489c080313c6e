from __future__ import annotations

from typing import override

from django.core.management.base import BaseCommand
from django.utils import timezone

from voting.elections_services import finalize_expired_elections
from voting.models import Election


class Command(BaseCommand):
    help = "Finalize active elections whose end_datetime has passed."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without modifying elections.",
        )

    @override
    def handle(self, *args, **options) -> None:
        dry_run: bool = bool(options.get("dry_run"))

        now = timezone.now()

        if dry_run:
            to_finalize = Election.objects.filter(status=Election.Status.active, end_datetime__lte=now).count()
            self.stdout.write(f"[dry-run] Would finalize {to_finalize} election(s).")
            return

        finalized, failed = finalize_expired_elections(now=now)
        for election_id in failed:
            self.stderr.write(f"Failed to finalize election {election_id}.")

        self.stdout.write(f"Finalized {len(finalized)} election(s); failed {len(failed)}.")
