from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    ordering = ("email",)
    list_display = ("id", "email", "full_name", "is_staff", "is_superuser", "date_joined")
    search_fields = ("email", "full_name", "cpf", "phone")

    # Fieldsets sem username
    fieldsets = (
        ("Credenciais", {"fields": ("email", "password")}),
        ("Dados pessoais", {"fields": ("full_name", "first_name", "last_name", "cpf", "phone", "whatsapp")}),
        ("Permissões", {"fields": ("is_active", "is_staff", "is_superuser", "groups", "user_permissions")}),
        ("Datas", {"fields": ("last_login", "date_joined")}),
    )
    add_fieldsets = (
        ("Novo usuário", {
            "classes": ("wide",),
            "fields": ("email", "password1", "password2", "is_staff", "is_superuser"),
        }),
    )
