from django.core.management.base import BaseCommand, CommandError

from payments.exceptions import ReconciliationError, RepairNotFound
from payments.services.repairs import force_fix_package, force_fix_unsettled_packages


class Command(BaseCommand):
    help = "Settle a package from its approved payment reference, or discover unsettled ones."

    def add_arguments(self, parser):
        parser.add_argument("payment_ref", nargs="?")
        parser.add_argument(
            "--discover",
            action="store_true",
            help="Settle every approved package payment that still has open bookings.",
        )

    def handle(self, *args, **options):
        if not options["discover"] and not options["payment_ref"]:
            raise CommandError("Provide a payment reference or --discover.")
        try:
            if options["discover"]:
                result = force_fix_unsettled_packages()
            else:
                result = force_fix_package(options["payment_ref"])
        except RepairNotFound as exc:
            raise CommandError(f"NotFound: {exc}")
        except ReconciliationError as exc:
            raise CommandError(f"InternalError: {exc}")
        self.stdout.write(self.style.SUCCESS(f"{result.updated} updated. {result.detail}"))
