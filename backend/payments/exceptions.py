from rest_framework import status
from rest_framework.exceptions import APIException


class ProviderUnavailable(APIException):
    """Rede/timeout/5xx do provedor. Retentável pelo chamador."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Não foi possível falar com o provedor de pagamento. Tente novamente em instantes."
    default_code = "provider_unavailable"


class ChargeRejected(APIException):
    """O provedor recusou a cobrança. Terminal para a tentativa."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_code = "charge_rejected"

    INVALID_CARD = "invalid_card"
    DECLINED = "declined"
    INVALID_CUSTOMER = "invalid_customer"
    REJECTED = "rejected"

    MESSAGES = {
        INVALID_CARD: "Dados do cartão inválidos. Verifique o número, a validade e o CVV.",
        DECLINED: "Pagamento recusado pelo emissor do cartão. Tente outro cartão.",
        INVALID_CUSTOMER: "Dados do comprador inválidos. Confira CPF/CNPJ, telefone e endereço.",
        REJECTED: "Não foi possível processar o pagamento. Confira os dados e tente novamente.",
    }

    def __init__(self, category=REJECTED, provider_reason=""):
        self.category = category if category in self.MESSAGES else self.REJECTED
        # Texto cru do provedor só vai para log, nunca para o usuário final.
        self.provider_reason = provider_reason
        super().__init__(detail=self.MESSAGES[self.category], code=self.category)


class AlreadyPaid(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Este pedido já foi pago."
    default_code = "already_paid"


class AttemptInProgress(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Já existe um pagamento em andamento para este pedido."
    default_code = "attempt_in_progress"

    def __init__(self, attempt=None):
        self.attempt = attempt
        if attempt is None:
            super().__init__()
            return
        # O cliente que perdeu a primeira resposta retoma a observação por aqui.
        expires_at = attempt.expires_at.isoformat() if attempt.expires_at else ""
        super().__init__(
            detail={
                "detail": self.default_detail,
                "attemptId": str(attempt.pk),
                "status": attempt.status,
                "expiresAt": expires_at,
            },
            code=self.default_code,
        )


class AmountMismatch(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Valor do pagamento não confere com o pedido."
    default_code = "amount_mismatch"


class InvalidWebhookAuth(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Token do webhook inválido."
    default_code = "invalid_webhook_auth"


class WebhookNotConfigured(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "ASAAS_WEBHOOK_TOKEN obrigatório (defina a variável ou habilite ASAAS_ALLOW_WEBHOOK_NO_TOKEN em DEBUG)."
    default_code = "webhook_not_configured"


class PaymentPersistenceError(APIException):
    """A cobrança foi criada no provedor, mas não conseguimos registrar localmente (já compensada)."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Falha ao salvar o pagamento. Nenhuma cobrança foi mantida; tente novamente."
    default_code = "payment_persistence_error"


class StaleTransition(Exception):
    """
    Um evento tentou levar uma tentativa terminal para outro estado terminal.
    Só é logado como anomalia; nunca chega ao chamador.
    """

    def __init__(self, attempt_id, current, proposed, source):
        self.attempt_id = attempt_id
        self.current = current
        self.proposed = proposed
        self.source = source
        super().__init__(f"attempt {attempt_id}: {current} -> {proposed} via {source}")


class AttemptClosed(APIException):
    """A tentativa já terminou em outro estado (expirada/falhou)."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "attempt_closed"

    def __init__(self, current_status):
        self.current_status = current_status
        super().__init__(
            detail={"detail": "Este pagamento não pode mais ser confirmado.", "status": current_status},
            code=self.default_code,
        )


class ManualConfirmationNotAllowed(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Somente pagamentos PIX direto podem ser confirmados manualmente."
    default_code = "manual_confirmation_not_allowed"


class InvalidWebhookPayload(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "payment.externalReference obrigatório."
    default_code = "invalid_webhook_payload"
