from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        from payments.services.notifier import ChangeNotifier
        from payments.services.triggers import TriggerRegistry

        self.notifier = ChangeNotifier()
        self.triggers = TriggerRegistry(notifier=self.notifier)
