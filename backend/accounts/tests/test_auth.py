from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.test import APITestCase


User = get_user_model()


class AuthTests(APITestCase):
    def setUp(self):
        self.password = "StrongPass123"
        self.user = User.objects.create_user(
            email="active@example.com",
            password=self.password,
            full_name="Cliente Ativo",
        )
        self.inactive = User.objects.create_user(
            email="inactive@example.com",
            password=self.password,
            is_active=False,
        )

    def test_login_success(self):
        url = reverse("auth-login")
        res = self.client.post(url, {"email": "ACTIVE@example.com", "password": self.password})
        self.assertEqual(res.status_code, 200)
        self.assertIn("access", res.data)
        self.assertIn("refresh", res.data)
        self.assertEqual(res.data["user"]["email"], self.user.email)
        self.assertFalse(res.data["user"]["is_staff"])

    def test_login_wrong_password(self):
        res = self.client.post(reverse("auth-login"), {"email": self.user.email, "password": "nope"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.data.get("detail"), "Credenciais inválidas.")

    def test_login_requires_email_and_password(self):
        res = self.client.post(reverse("auth-login"), {"email": self.user.email})
        self.assertEqual(res.status_code, 400)

    def test_login_inactive_user_blocked(self):
        res = self.client.post(reverse("auth-login"), {"email": self.inactive.email, "password": self.password})
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.data.get("detail"), "Conta inativa. Fale com o suporte.")

    def test_refresh_returns_new_access(self):
        login = self.client.post(reverse("auth-login"), {"email": self.user.email, "password": self.password})
        res = self.client.post(reverse("auth-refresh"), {"refresh": login.data["refresh"]})
        self.assertEqual(res.status_code, 200)
        self.assertIn("access", res.data)
