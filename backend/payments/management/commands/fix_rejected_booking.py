from django.core.management.base import BaseCommand, CommandError

from payments.exceptions import ReconciliationError, RepairNotFound
from payments.services.repairs import fix_rejected


class Command(BaseCommand):
    help = "Reopen a booking whose payment was rejected so the client can pay again."

    def add_arguments(self, parser):
        parser.add_argument("booking_id", type=int)

    def handle(self, *args, **options):
        try:
            result = fix_rejected(options["booking_id"])
        except RepairNotFound as exc:
            raise CommandError(f"NotFound: {exc}")
        except ReconciliationError as exc:
            raise CommandError(f"InternalError: {exc}")
        self.stdout.write(self.style.SUCCESS(f"{result.updated} updated. {result.detail}"))
