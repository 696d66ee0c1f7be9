from rest_framework import serializers

from orders.models import Order

from .models import PaymentAttempt


class PayerDetailsSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    taxId = serializers.RegexField(r"^[\d.\-/ ]{11,18}$", error_messages={"invalid": "CPF/CNPJ inválido."})
    phone = serializers.CharField(max_length=30, required=False, allow_blank=True, default="")
    postalCode = serializers.CharField(max_length=9, required=False, allow_blank=True, default="")
    address = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    addressNumber = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    complement = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    province = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    city = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    state = serializers.CharField(max_length=2, required=False, allow_blank=True, default="")


class CardDetailsSerializer(serializers.Serializer):
    holderName = serializers.CharField(max_length=150)
    number = serializers.RegexField(r"^[\d ]{13,23}$", error_messages={"invalid": "Número do cartão inválido."})
    expiryMonth = serializers.RegexField(r"^\d{1,2}$")
    expiryYear = serializers.RegexField(r"^\d{2}(\d{2})?$")
    ccv = serializers.RegexField(r"^\d{3,4}$")


class CreatePaymentAttemptSerializer(serializers.Serializer):
    orderId = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    method = serializers.ChoiceField(choices=Order.PaymentMethod.CHOICES)
    payerDetails = PayerDetailsSerializer(required=False)
    cardDetails = CardDetailsSerializer(required=False)
    installments = serializers.IntegerField(min_value=1, max_value=12, required=False, default=1)

    def validate(self, attrs):
        method = attrs["method"]
        if method in Order.PaymentMethod.GATEWAY and not attrs.get("payerDetails"):
            raise serializers.ValidationError({"payerDetails": "Obrigatório para pagamentos via Asaas."})
        if method == Order.PaymentMethod.GATEWAY_CARD and not attrs.get("cardDetails"):
            raise serializers.ValidationError({"cardDetails": "Obrigatório para cartão de crédito."})
        return attrs


class PaymentAttemptSerializer(serializers.ModelSerializer):
    """Resposta do checkout; campos vazios do trilho não usado são omitidos."""

    attemptId = serializers.UUIDField(source="id")
    orderId = serializers.UUIDField(source="order_id")
    expiresAt = serializers.DateTimeField(source="expires_at")
    pixKey = serializers.CharField(source="pix_key")
    transactionId = serializers.SerializerMethodField()
    pixPayload = serializers.CharField(source="pix_payload")
    pixQrImage = serializers.CharField(source="pix_qr_image")
    invoiceUrl = serializers.CharField(source="invoice_url")
    cardLastDigits = serializers.CharField(source="card_last_digits")
    cardBrand = serializers.CharField(source="card_brand")
    failureReason = serializers.CharField(source="failure_reason")

    OPTIONAL = (
        "expiresAt",
        "pixKey",
        "transactionId",
        "pixPayload",
        "pixQrImage",
        "invoiceUrl",
        "cardLastDigits",
        "cardBrand",
        "failureReason",
    )

    class Meta:
        model = PaymentAttempt
        fields = [
            "attemptId",
            "orderId",
            "status",
            "method",
            "amount",
            "installments",
            "expiresAt",
            "pixKey",
            "transactionId",
            "pixPayload",
            "pixQrImage",
            "invoiceUrl",
            "cardLastDigits",
            "cardBrand",
            "failureReason",
        ]

    def get_transactionId(self, obj):
        return obj.provider_transaction_id if obj.is_direct_pix else None

    def to_representation(self, instance):
        data = super().to_representation(instance)
        for key in self.OPTIONAL:
            if data.get(key) in (None, ""):
                data.pop(key, None)
        return data


class AttemptStatusSerializer(serializers.ModelSerializer):
    attemptId = serializers.UUIDField(source="id")
    confirmedAt = serializers.DateTimeField(source="confirmed_at")
    expiresAt = serializers.DateTimeField(source="expires_at")
    orderStatus = serializers.CharField(source="order.status")
    paymentStatus = serializers.CharField(source="order.payment_status")

    class Meta:
        model = PaymentAttempt
        fields = ["attemptId", "status", "method", "confirmedAt", "expiresAt", "orderStatus", "paymentStatus"]
        read_only_fields = fields


def attempt_status_payload(attempt):
    return AttemptStatusSerializer(attempt).data
