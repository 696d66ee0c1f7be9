from django.core.management.base import BaseCommand

from payments.reconciliation import expire_overdue_attempts


class Command(BaseCommand):
    help = "Expira tentativas de pagamento pendentes com prazo vencido. Útil para cron."

    def handle(self, *args, **options):
        count = expire_overdue_attempts()
        self.stdout.write(self.style.SUCCESS(f"Tentativas expiradas: {count}"))
