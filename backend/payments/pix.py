import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.utils import timezone

PIX_KEY_ALPHABET = string.ascii_lowercase + string.digits
PIX_KEY_LENGTH = 32
BASE36_ALPHABET = string.digits + string.ascii_lowercase
# Prazo fixo do PIX direto
PIX_EXPIRATION = timedelta(minutes=30)


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rest = divmod(number, 36)
        digits.append(BASE36_ALPHABET[rest])
    return "".join(reversed(digits))


@dataclass(frozen=True)
class DirectPixCharge:
    pix_key: str
    transaction_id: str
    issued_at: datetime
    expires_at: datetime


class DirectPixIssuer:
    """Emite PIX direto localmente: chave aleatória, txid e prazo de 30 minutos."""

    def __init__(self, clock=timezone.now):
        self.clock = clock

    def generate_pix_key(self) -> str:
        return "".join(secrets.choice(PIX_KEY_ALPHABET) for _ in range(PIX_KEY_LENGTH))

    def generate_transaction_id(self, issued_at: datetime) -> str:
        millis = int(issued_at.timestamp() * 1000)
        suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(8))
        return f"PIX{to_base36(millis)}{suffix}".upper()

    def issue(self, order_id, amount) -> DirectPixCharge:
        issued_at = self.clock()
        return DirectPixCharge(
            pix_key=self.generate_pix_key(),
            transaction_id=self.generate_transaction_id(issued_at),
            issued_at=issued_at,
            expires_at=issued_at + PIX_EXPIRATION,
        )
