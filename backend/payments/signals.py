from django.dispatch import Signal

# Enviado (após o commit) sempre que uma tentativa muda de estado.
# kwargs: attempt, previous, status, source
attempt_status_changed = Signal()
