"""
Adaptador sem estado para a API v3 do Asaas (PIX, boleto e cartão).

Traduz "criar cobrança", "achar ou criar cliente" e "cancelar cobrança" em chamadas
HTTP e devolve objetos de domínio. Erros de rede/timeout/5xx viram ProviderUnavailable;
4xx vira ChargeRejected com uma categoria fixa (o texto cru só vai para log).
"""
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

import requests
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from orders.models import Order

from .exceptions import ChargeRejected, ProviderUnavailable

logger = logging.getLogger(__name__)

# Datas do Asaas vêm sem offset, no horário de Brasília (o TIME_ZONE do projeto é Porto Velho).
PROVIDER_TIMEZONE = ZoneInfo("America/Sao_Paulo")

BILLING_TYPES = {
    Order.PaymentMethod.GATEWAY_PIX: "PIX",
    Order.PaymentMethod.GATEWAY_BOLETO: "BOLETO",
    Order.PaymentMethod.GATEWAY_CARD: "CREDIT_CARD",
}
BOLETO_DUE_DAYS = 3


def only_digits(value) -> str:
    return re.sub(r"\D", "", str(value or ""))


def mask_card_number(number) -> str:
    return "**** **** **** " + only_digits(number)[-4:]


def detect_card_brand(number) -> str:
    clean = only_digits(number)
    if re.match(r"^(636368|438935|504175|451416|636297|5067|4576|4011|506699)", clean):
        return "elo"
    if re.match(r"^(606282|3841)", clean):
        return "hipercard"
    if clean.startswith("4"):
        return "visa"
    if re.match(r"^(5[1-5]|2[2-7])", clean):
        return "mastercard"
    if re.match(r"^3[47]", clean):
        return "amex"
    return "other"


@dataclass
class CustomerIdentity:
    name: str
    email: str
    phone: str = ""
    external_reference: str = ""


@dataclass
class BillingAddress:
    postal_code: str
    address: str
    address_number: str
    province: str
    city: str
    state: str
    complement: str = ""


@dataclass
class CardDetails:
    holder_name: str
    number: str
    expiry_month: str
    expiry_year: str
    ccv: str

    @property
    def last_digits(self):
        return only_digits(self.number)[-4:]

    @property
    def brand(self):
        return detect_card_brand(self.number)

    def as_payload(self):
        year = str(self.expiry_year).strip()
        if len(year) == 2:
            year = "20" + year
        return {
            "holderName": self.holder_name,
            "number": only_digits(self.number),
            "expiryMonth": str(self.expiry_month).strip().zfill(2),
            "expiryYear": year,
            "ccv": str(self.ccv).strip(),
        }


@dataclass
class ProviderPayment:
    id: str
    status: str
    invoice_url: str = ""
    pix_payload: str = ""
    pix_qr_image: str = ""
    expires_at: Optional[object] = None
    raw: dict = field(default_factory=dict)


def _parse_provider_datetime(value):
    """Asaas manda "2024-05-20 23:59:59" no fuso de Brasília, sem offset."""
    if not value:
        return None
    parsed = parse_datetime(str(value).replace(" ", "T"))
    if parsed is None:
        day = parse_date(str(value))
        if day is None:
            return None
        parsed = datetime.combine(day, time.max)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, PROVIDER_TIMEZONE)
    return parsed


def _provider_reason(response):
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors:
        first = errors[0] or {}
        return first.get("description") or first.get("code") or ""
    return str(body)[:300]


def categorize_rejection(reason: str, *, default=ChargeRejected.REJECTED) -> str:
    text = (reason or "").lower()
    if "recusad" in text or "negad" in text or "declin" in text:
        return ChargeRejected.DECLINED
    if "cartão" in text or "cartao" in text or "card" in text or "cvv" in text:
        return ChargeRejected.INVALID_CARD
    if "cpf" in text or "cnpj" in text or "customer" in text or "cliente" in text:
        return ChargeRejected.INVALID_CUSTOMER
    return default


class AsaasGatewayClient:
    """
    Cliente HTTP do Asaas. Não guarda estado de negócio; pode ser instanciado por request.
    """

    def __init__(self, api_key=None, base_url=None, timeout=None, session=None):
        self.api_key = api_key if api_key is not None else settings.ASAAS_API_KEY
        self.base_url = (base_url or settings.ASAAS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.ASAAS_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def configured(self):
        return bool(self.api_key)

    def _headers(self):
        return {"Content-Type": "application/json", "access_token": self.api_key}

    def _request(self, method, path, *, json=None, params=None, category=ChargeRejected.REJECTED):
        if not self.configured:
            logger.error("asaas_not_configured", extra={"path": path})
            raise ProviderUnavailable("Pagamento indisponível no momento. Tente novamente mais tarde.")
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            logger.warning("asaas_unreachable", extra={"path": path, "method": method, "error": str(exc)})
            raise ProviderUnavailable() from exc
        except requests.RequestException as exc:
            logger.error("asaas_request_error", extra={"path": path, "method": method, "error": str(exc)})
            raise ProviderUnavailable() from exc

        if resp.status_code >= 500 or resp.status_code == 429:
            logger.warning("asaas_server_error", extra={"path": path, "status_code": resp.status_code})
            raise ProviderUnavailable()
        if resp.status_code >= 400:
            reason = _provider_reason(resp)
            logger.info(
                "asaas_request_rejected",
                extra={"path": path, "status_code": resp.status_code, "reason": reason},
            )
            raise ChargeRejected(categorize_rejection(reason, default=category), provider_reason=reason)
        try:
            return resp.json()
        except ValueError:
            return {}

    # --- Clientes ---------------------------------------------------------

    def _search_customer(self, tax_id):
        data = self._request("GET", "/customers", params={"cpfCnpj": tax_id}, category=ChargeRejected.INVALID_CUSTOMER)
        found = data.get("data") or []
        if found:
            return found[0].get("id")
        return None

    def find_or_create_customer(self, identity: CustomerIdentity, tax_id, address: Optional[BillingAddress] = None) -> str:
        """
        Busca pelo CPF/CNPJ (chave idempotente) e cria só se não existir. "Já existe"
        do provedor conta como sucesso: buscamos de novo e devolvemos o existente.
        """
        clean_tax_id = only_digits(tax_id)
        existing = self._search_customer(clean_tax_id)
        if existing:
            logger.info("asaas_customer_found", extra={"customer_id": existing})
            return existing

        payload = {
            "name": identity.name,
            "email": identity.email,
            "cpfCnpj": clean_tax_id,
            "mobilePhone": only_digits(identity.phone),
            "externalReference": identity.external_reference,
            "notificationDisabled": False,
        }
        if address:
            payload.update(
                {
                    "postalCode": only_digits(address.postal_code),
                    "address": address.address,
                    "addressNumber": address.address_number,
                    "complement": address.complement or "",
                    "province": address.province,
                    "city": address.city,
                    "state": address.state,
                }
            )
        try:
            created = self._request("POST", "/customers", json=payload, category=ChargeRejected.INVALID_CUSTOMER)
        except ChargeRejected as exc:
            if "exist" in (exc.provider_reason or "").lower() or "já" in (exc.provider_reason or "").lower():
                existing = self._search_customer(clean_tax_id)
                if existing:
                    return existing
            raise
        customer_id = created.get("id")
        if not customer_id:
            raise ProviderUnavailable()
        logger.info("asaas_customer_created", extra={"customer_id": customer_id})
        return customer_id

    # --- Cobranças --------------------------------------------------------

    def create_charge(
        self,
        customer_ref,
        amount,
        order_id,
        method,
        card: Optional[CardDetails] = None,
        installments=1,
        description="",
        holder: Optional[CustomerIdentity] = None,
        holder_tax_id="",
        address: Optional[BillingAddress] = None,
    ) -> ProviderPayment:
        billing_type = BILLING_TYPES[method]
        amount = Decimal(str(amount))
        due = date.today()
        if billing_type == "BOLETO":
            due = due + timedelta(days=BOLETO_DUE_DAYS)

        payload = {
            "customer": customer_ref,
            "billingType": billing_type,
            "value": float(amount),
            "dueDate": due.isoformat(),
            "description": description,
            "externalReference": str(order_id),
        }
        if billing_type == "CREDIT_CARD":
            if card is None:
                raise ChargeRejected(ChargeRejected.INVALID_CARD, provider_reason="card details missing")
            payload["creditCard"] = card.as_payload()
            if holder is not None:
                holder_info = {
                    "name": holder.name,
                    "email": holder.email,
                    "cpfCnpj": only_digits(holder_tax_id),
                    "phone": only_digits(holder.phone),
                }
                if address is not None:
                    holder_info.update(
                        {
                            "postalCode": only_digits(address.postal_code),
                            "address": address.address,
                            "addressNumber": address.address_number,
                            "complement": address.complement or "",
                            "province": address.province,
                            "city": address.city,
                        }
                    )
                payload["creditCardHolderInfo"] = holder_info
            # Parcelamento é só repassado ao provedor (sem ramo próprio na conciliação)
            if installments and installments > 1:
                payload["installmentCount"] = int(installments)
                payload["installmentValue"] = float(installment_value(amount, installments))
            logger.info(
                "asaas_card_charge_start",
                extra={"order_id": str(order_id), "card": mask_card_number(card.number), "installments": installments},
            )

        data = self._request("POST", "/payments", json=payload)
        payment = ProviderPayment(
            id=data.get("id") or "",
            status=(data.get("status") or "").upper(),
            invoice_url=data.get("invoiceUrl") or "",
            raw=data,
        )
        if not payment.id:
            logger.error("asaas_charge_without_id", extra={"order_id": str(order_id)})
            raise ProviderUnavailable()
        logger.info(
            "asaas_charge_created",
            extra={"order_id": str(order_id), "provider_payment_id": payment.id, "status": payment.status},
        )

        if billing_type == "PIX":
            self._attach_pix_qr_code(payment)
        return payment

    def _attach_pix_qr_code(self, payment: ProviderPayment):
        # Segunda chamada; se falhar a cobrança continua válida pela invoiceUrl.
        try:
            data = self._request("GET", f"/payments/{payment.id}/pixQrCode")
        except (ProviderUnavailable, ChargeRejected) as exc:
            logger.warning(
                "asaas_pix_qrcode_unavailable",
                extra={"provider_payment_id": payment.id, "error": str(exc.detail)},
            )
            return payment
        payment.pix_payload = data.get("payload") or ""
        payment.pix_qr_image = data.get("encodedImage") or ""
        payment.expires_at = _parse_provider_datetime(data.get("expirationDate"))
        return payment

    def cancel_charge(self, provider_payment_id) -> bool:
        """
        Compensação best-effort: uma cobrança não confirmada que sobrar expira sozinha,
        então falha aqui é só logada.
        """
        if not provider_payment_id:
            return False
        try:
            self._request("DELETE", f"/payments/{provider_payment_id}")
        except (ProviderUnavailable, ChargeRejected) as exc:
            logger.error(
                "asaas_cancel_charge_failed",
                extra={"provider_payment_id": provider_payment_id, "error": str(exc.detail)},
            )
            return False
        logger.info("asaas_charge_cancelled", extra={"provider_payment_id": provider_payment_id})
        return True


def installment_value(amount, installments) -> Decimal:
    """Valor de cada parcela arredondado para cima no centavo."""
    if not installments or installments <= 1:
        return Decimal(str(amount))
    cents = math.ceil(Decimal(str(amount)) * 100 / installments)
    return Decimal(cents) / 100
