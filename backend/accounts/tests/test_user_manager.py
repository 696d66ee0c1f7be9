from django.contrib.auth import get_user_model
from django.test import TestCase


User = get_user_model()


class UserManagerTests(TestCase):
    def test_create_superuser_sets_flags_and_normalizes_email(self):
        user = User.objects.create_superuser(
            email="ADMIN@Example.COM",
            password="secure123!",
        )
        self.assertTrue(user.is_staff)
        self.assertTrue(user.is_superuser)
        self.assertTrue(user.is_active)
        self.assertEqual(user.email, "admin@example.com")

    def test_create_superuser_requires_email(self):
        with self.assertRaisesMessage(ValueError, "O email é obrigatório"):
            User.objects.create_superuser(email="", password="123")

    def test_create_superuser_flags_must_be_true(self):
        with self.assertRaisesMessage(ValueError, "Superuser precisa ter is_staff=True"):
            User.objects.create_superuser(
                email="a@example.com",
                password="pass",
                is_staff=False,
            )

    def test_contact_phone_prefers_whatsapp(self):
        user = User.objects.create_user(
            email="cliente@example.com",
            password="testpass",
            phone="6933330000",
            whatsapp="69999990000",
        )
        self.assertEqual(user.contact_phone, "69999990000")
        self.assertEqual(user.display_name, "cliente@example.com")
