from django.core.management.base import BaseCommand, CommandError

from payments.exceptions import ReconciliationError, RepairNotFound
from payments.services.repairs import fix_package


class Command(BaseCommand):
    help = "Re-run settlement for a package token whose payment is already approved."

    def add_arguments(self, parser):
        parser.add_argument("package_token")

    def handle(self, *args, **options):
        try:
            result = fix_package(options["package_token"])
        except RepairNotFound as exc:
            raise CommandError(f"NotFound: {exc}")
        except ReconciliationError as exc:
            raise CommandError(f"InternalError: {exc}")
        self.stdout.write(self.style.SUCCESS(f"{result.updated} updated. {result.detail}"))
