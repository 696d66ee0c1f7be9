from django.core.management.base import BaseCommand

from notifications.dispatch import dispatch_queued


class Command(BaseCommand):
    help = "Reenvia notificações pendentes no outbox. Útil para cron."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            help="Máximo de notificações processadas nesta execução.",
        )

    def handle(self, *args, **options):
        results = dispatch_queued(limit=options.get("limit"))
        summary = ", ".join(f"{status}: {count}" for status, count in sorted(results.items())) or "nada na fila"
        self.stdout.write(self.style.SUCCESS(f"Notificações processadas ({summary})"))
