from rest_framework_simplejwt.authentication import JWTAuthentication


class StrictJWTAuthentication(JWTAuthentication):
    """JWT obrigatório nos endpoints de checkout e do painel; sem fallback de sessão."""
