
from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    User model carrying the credit balance and billing identity
    """

    class Role(models.TextChoices):
        USER = "user", "User"
        ADMIN = "admin", "Admin"

    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.USER)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    # Credit balance, mutated only through payments.services.credit_ledger
    credits = models.PositiveIntegerField(default=0)
    plan_type = models.CharField(max_length=32, default="free")
    plan_expires_at = models.DateTimeField(null=True, blank=True)
    # Gateway customer references
    stripe_customer_id = models.CharField(max_length=255, blank=True, null=True)
    razorpay_customer_id = models.CharField(max_length=255, blank=True, null=True)
    paypal_payer_id = models.CharField(max_length=255, blank=True, null=True)
    paystack_customer_code = models.CharField(max_length=255, blank=True, null=True)
    mercadopago_customer_id = models.CharField(max_length=255, blank=True, null=True)

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        constraints = [
            models.CheckConstraint(condition=models.Q(credits__gte=0), name="user_credits_non_negative"),
        ]

    def __str__(self):
        return self.username

    @property
    def is_platform_admin(self) -> bool:
        return self.is_superuser or self.role == self.Role.ADMIN


class Notification(models.Model):
    """In-app notification shown to a user."""

    class Kind(models.TextChoices):
        PAYMENT = "payment", "Payment"
        MEMBERSHIP = "membership", "Membership"
        ACCOUNT = "account", "Account"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    kind = models.CharField(max_length=32, choices=Kind.choices, default=Kind.PAYMENT)
    title = models.CharField(max_length=200)
    message = models.TextField(blank=True)
    link = models.CharField(max_length=255, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "user_notification"
        ordering = ("-created_at", "-id")
        indexes = [models.Index(fields=("user", "is_read"), name="notification_user_read_idx")]

    def __str__(self) -> str:  # pragma: no cover - human readable only
        return f"Notification<{self.user_id}:{self.title}>"
