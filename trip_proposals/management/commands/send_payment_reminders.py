from datetime import datetime

from django.core.management.base import BaseCommand, CommandError

from trip_proposals.reminders import dispatch_due_reminders


class Command(BaseCommand):
    help = "Send every pending payment reminder that is due today or earlier."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            help="Treat this YYYY-MM-DD date as today. Defaults to the current local date.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be sent or skipped without changing anything.",
        )

    def handle(self, date: str | None = None, dry_run: bool = False, **options):
        today = None
        if date:
            try:
                today = datetime.strptime(date, "%Y-%m-%d").date()
            except ValueError as exc:
                raise CommandError(f"Invalid --date '{date}', expected YYYY-MM-DD") from exc

        counts = dispatch_due_reminders(today=today, dry_run=dry_run)

        summary = (
            f"Sent {counts['sent']}, skipped {counts['skipped']}, failed {counts['failed']}"
        )
        if dry_run:
            summary = f"[dry run] {summary}"
        if counts["failed"]:
            self.stdout.write(self.style.WARNING(summary))
        else:
            self.stdout.write(self.style.SUCCESS(summary))
