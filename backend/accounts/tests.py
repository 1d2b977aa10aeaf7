"""
Test suite for the accounts app.

Covers the billing fields carried on the User model and in-app notifications.
"""
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F
from django.test import TestCase

from .models import Notification

User = get_user_model()


class UserModelTest(TestCase):
    """Test cases for the User model."""

    def setUp(self):
        self.user = User.objects.create_user(
            username='testuser',
            email='test@example.com',
            password='testpass123',
        )

    def test_defaults(self):
        self.assertEqual(self.user.credits, 0)
        self.assertEqual(self.user.plan_type, 'free')
        self.assertEqual(self.user.role, User.Role.USER)
        self.assertTrue(self.user.is_active)
        self.assertFalse(self.user.is_platform_admin)

    def test_admin_role_is_platform_admin(self):
        self.user.role = User.Role.ADMIN
        self.assertTrue(self.user.is_platform_admin)

    def test_superuser_is_platform_admin(self):
        admin = User.objects.create_superuser(username='root', email='root@example.com', password='x')
        self.assertTrue(admin.is_platform_admin)

    def test_credits_cannot_go_negative(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                User.objects.filter(pk=self.user.pk).update(credits=F('credits') - 1)

    def test_str(self):
        self.assertEqual(str(self.user), 'testuser')


class NotificationModelTest(TestCase):

    def test_notifications_ordered_newest_first(self):
        user = User.objects.create_user(username='n', email='n@example.com', password='x')
        first = Notification.objects.create(user=user, title='first')
        second = Notification.objects.create(user=user, title='second')
        self.assertEqual(list(user.notifications.all()), [second, first])
        self.assertFalse(first.is_read)
