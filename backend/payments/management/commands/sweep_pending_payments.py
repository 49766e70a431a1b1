from django.core.management.base import BaseCommand

from payments.services.triggers import run_backup_sweep


class Command(BaseCommand):
    help = "Reconcile pending payments the webhook may have missed (backup sweep)."

    def add_arguments(self, parser):
        parser.add_argument("--batch-size", type=int, default=None)
        parser.add_argument("--pause", type=float, default=None, help="Seconds between gateway checks.")

    def handle(self, *args, **options):
        overrides = {}
        if options["batch_size"] is not None:
            overrides["batch_size"] = options["batch_size"]
        if options["pause"] is not None:
            overrides["pause"] = options["pause"]
        report = run_backup_sweep(**overrides)
        self.stdout.write(
            self.style.SUCCESS(
                f"Backup sweep: {report.processed} checked, {report.confirmed} confirmed, {report.failed} failed."
            )
        )
