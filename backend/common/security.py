import logging
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string
from rest_framework import permissions

from .authentication import StrictJWTAuthentication

logger = logging.getLogger(__name__)

ACCESS_LEVELS = ("private", "admin", "webhook")


def _as_class(entry):
    if isinstance(entry, str):
        return import_string(entry)
    return entry if isinstance(entry, type) else None


def _report(view, message, *, always_raise=False):
    if always_raise or settings.DEBUG:
        raise ImproperlyConfigured(message)
    logger.warning("%s", message, extra={"view": view.__class__.__name__})


class EndpointAccessGuardMixin:
    """
    Confere, na entrada de cada request, se a view declara a autenticação que a sua
    classificação exige. Endpoint de checkout/admin sem JWT é erro de configuração.
    """

    endpoint_access = None  # type: ignore[assignment]

    def initial(self, request, *args, **kwargs):
        drf_request = super().initial(request, *args, **kwargs)
        self._enforce_guard_rules()
        return drf_request

    def _enforce_guard_rules(self):
        access = (str(self.endpoint_access or "")).strip().lower()
        if access and access not in ACCESS_LEVELS:
            _report(self, f"{self.__class__.__name__}: endpoint_access desconhecido '{access}'.", always_raise=True)
        if access in ("private", "admin"):
            self._ensure_private_rules()
        elif access == "webhook":
            self._ensure_webhook_rules()

    def _ensure_private_rules(self):
        resolved = self._authentication_classes()
        if not resolved:
            _report(
                self,
                f"{self.__class__.__name__} é privado mas não declara autenticação. Use StrictJWTAuthentication.",
                always_raise=True,
            )
        for auth_cls in resolved:
            if not issubclass(auth_cls, StrictJWTAuthentication):
                _report(
                    self,
                    f"{self.__class__.__name__} é privado mas usa {auth_cls.__name__}. Use StrictJWTAuthentication.",
                    always_raise=True,
                )

    def _ensure_webhook_rules(self):
        # Webhooks se autenticam pelo token compartilhado, nunca por sessão/JWT.
        if getattr(self, "authentication_classes", None):
            _report(
                self,
                f"{self.__class__.__name__} é webhook mas declara authentication_classes; "
                "callbacks do provedor são verificados pelo token compartilhado.",
            )

    def _authentication_classes(self):
        sources = list(getattr(self, "authentication_classes", None) or [])
        if not sources:
            sources = list(getattr(settings, "REST_FRAMEWORK", {}).get("DEFAULT_AUTHENTICATION_CLASSES", []))
        resolved = []
        for entry in sources:
            cls = _as_class(entry)
            if cls and cls not in resolved:
                resolved.append(cls)
        return resolved


class PrivateEndpointMixin(EndpointAccessGuardMixin):
    """
    Aplica StrictJWT + IsAuthenticated para garantir endpoints protegidos.
    """

    endpoint_access = "private"
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [StrictJWTAuthentication]


class AdminEndpointMixin(PrivateEndpointMixin):
    endpoint_access = "admin"
    permission_classes = [permissions.IsAuthenticated, permissions.IsAdminUser]


class WebhookEndpointMixin(EndpointAccessGuardMixin):
    """
    Callbacks de provedores externos: sem JWT nem throttling (o provedor faz retry
    com backoff próprio). A view valida o token compartilhado antes de tocar em estado.
    """

    endpoint_access = "webhook"
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = []
