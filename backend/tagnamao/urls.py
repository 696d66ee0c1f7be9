from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.http import JsonResponse
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.views import EmailLoginView


# === Healthcheck ===
def healthcheck(request):
    """
    Endpoint simples para verificar o estado do servidor.
    Usado por monitoramento e pelo load balancer.
    """
    return JsonResponse({"status": "ok"}, status=200)


urlpatterns = [
    path(settings.ADMIN_URL, admin.site.urls),
    path("healthz/", healthcheck, name="healthcheck"),

    # Auth compatível com o frontend
    path("api/auth/login", EmailLoginView.as_view(), name="auth-login"),
    path("api/auth/refresh", TokenRefreshView.as_view(), name="auth-refresh"),

    path("api/payments/", include("payments.urls")),
]


urlpatterns += [
    path(
        "",
        lambda r: JsonResponse(
            {
                "message": "Tag na Mão API",
                "endpoints": [
                    "/api/auth/login",
                    "/api/payments/",
                    "/healthz/",
                ],
            },
            status=200,
        ),
        name="api-root",
    ),
]
