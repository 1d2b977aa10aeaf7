import uuid

import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

GATEWAY_CHOICES = [
    ('stripe', 'Stripe'),
    ('razorpay', 'Razorpay'),
    ('paypal', 'PayPal'),
    ('paystack', 'Paystack'),
    ('mercadopago', 'Mercado Pago'),
]
BILLING_PERIOD_CHOICES = [('monthly', 'Monthly'), ('yearly', 'Yearly')]
JSON_ENCODER = django.core.serializers.json.DjangoJSONEncoder


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Plan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.SlugField(help_text='Plan key stored on User.plan_type', max_length=32, unique=True)),
                ('display_name', models.CharField(max_length=64)),
                ('included_credits', models.PositiveIntegerField(default=0, help_text='Credits granted on each activation')),
                ('monthly_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('yearly_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Plan',
                'verbose_name_plural': 'Plans',
                'db_table': 'payments_plan',
                'ordering': ['monthly_price'],
            },
        ),
        migrations.CreateModel(
            name='CreditPackage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=64)),
                ('credits', models.PositiveIntegerField()),
                ('price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'payments_credit_package',
                'ordering': ['credits'],
            },
        ),
        migrations.CreateModel(
            name='GatewaySetting',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(help_text='e.g. stripe_secret_key, paypal_currency_locked', max_length=128, unique=True)),
                ('value', models.JSONField(blank=True, encoder=JSON_ENCODER, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'payments_gateway_setting',
                'ordering': ['key'],
            },
        ),
        migrations.CreateModel(
            name='Subscription',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('active', 'Active'), ('past_due', 'Past Due'), ('cancelled', 'Cancelled')], default='active', max_length=16)),
                ('stripe_subscription_id', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('razorpay_subscription_id', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('paypal_subscription_id', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('paystack_subscription_code', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('mercadopago_subscription_id', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('billing_period', models.CharField(choices=BILLING_PERIOD_CHOICES, default='monthly', max_length=16)),
                ('current_period_start', models.DateTimeField()),
                ('current_period_end', models.DateTimeField()),
                ('cancel_at_period_end', models.BooleanField(default=False)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='subscriptions', to='payments.plan')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='subscriptions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'payments_subscription',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'current_period_end'], name='payments_sub_status_end')],
                'constraints': [models.UniqueConstraint(condition=models.Q(('status', 'cancelled'), _negated=True), fields=('user',), name='payments_one_live_subscription_per_user')],
            },
        ),
        migrations.CreateModel(
            name='PaymentTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('type', models.CharField(choices=[('credits', 'Credits'), ('subscription', 'Subscription')], max_length=16)),
                ('gateway', models.CharField(choices=GATEWAY_CHOICES, max_length=32)),
                ('gateway_transaction_id', models.CharField(max_length=255)),
                ('gateway_subscription_id', models.CharField(blank=True, max_length=255, null=True)),
                ('amount', models.DecimalField(decimal_places=2, help_text='Major currency units', max_digits=12)),
                ('currency', models.CharField(max_length=3)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('billing_period', models.CharField(blank=True, choices=BILLING_PERIOD_CHOICES, max_length=16, null=True)),
                ('credits_awarded', models.PositiveIntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('completed', 'Completed'), ('refunded', 'Refunded')], default='completed', max_length=16)),
                ('completed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict, encoder=JSON_ENCODER)),
                ('credit_package', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='payments.creditpackage')),
                ('plan', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='payments.plan')),
                ('subscription', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='payments.subscription')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payment_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'payments_transaction',
                'ordering': ['-completed_at'],
                'indexes': [
                    models.Index(fields=['user', '-completed_at'], name='payments_tx_user_completed'),
                    models.Index(fields=['gateway_subscription_id'], name='payments_tx_gateway_sub'),
                ],
                'constraints': [models.UniqueConstraint(fields=('gateway', 'gateway_transaction_id'), name='payments_unique_gateway_transaction')],
            },
        ),
        migrations.CreateModel(
            name='Refund',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(max_length=3)),
                ('gateway', models.CharField(choices=GATEWAY_CHOICES, max_length=32)),
                ('gateway_refund_id', models.CharField(blank=True, max_length=255)),
                ('reason', models.CharField(choices=[('admin_initiated', 'Admin Initiated'), ('gateway_refund', 'Gateway Refund'), ('chargeback', 'Chargeback')], max_length=32)),
                ('initiated_by', models.CharField(choices=[('admin', 'Admin'), ('system', 'System'), ('gateway', 'Gateway')], max_length=16)),
                ('status', models.CharField(choices=[('completed', 'Completed')], default='completed', max_length=16)),
                ('credits_reversed', models.PositiveIntegerField(blank=True, null=True)),
                ('user_suspended', models.BooleanField(default=False)),
                ('metadata', models.JSONField(blank=True, default=dict, encoder=JSON_ENCODER)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('admin', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='initiated_refunds', to=settings.AUTH_USER_MODEL)),
                ('transaction', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='refund', to='payments.paymenttransaction')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='refunds', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'payments_refund',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['gateway', 'gateway_refund_id'], name='payments_refund_gateway_ref')],
            },
        ),
        migrations.CreateModel(
            name='CreditLedgerEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.IntegerField(help_text='Signed credit delta actually applied to the balance')),
                ('entry_type', models.CharField(choices=[('purchase', 'Purchase'), ('plan_grant', 'Plan Grant'), ('refund_reversal', 'Refund Reversal'), ('chargeback_reversal', 'Chargeback Reversal'), ('adjustment', 'Adjustment')], max_length=32)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('idempotency_key', models.CharField(blank=True, max_length=128, null=True, unique=True)),
                ('reference', models.CharField(blank=True, max_length=255)),
                ('metadata', models.JSONField(blank=True, default=dict, encoder=JSON_ENCODER)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='credit_entries', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'payments_credit_ledger_entry',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['user', '-created_at'], name='payments_ledger_user_ts')],
            },
        ),
        migrations.CreateModel(
            name='WebhookRetryItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('gateway', models.CharField(choices=GATEWAY_CHOICES, max_length=32)),
                ('event_type', models.CharField(max_length=128)),
                ('event_id', models.CharField(max_length=255)),
                ('payload', models.JSONField(blank=True, default=dict, encoder=JSON_ENCODER)),
                ('normalized_event', models.JSONField(blank=True, default=dict, encoder=JSON_ENCODER)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed'), ('expired', 'Expired')], default='pending', max_length=16)),
                ('attempt_count', models.PositiveIntegerField(default=0)),
                ('max_attempts', models.PositiveIntegerField(default=5)),
                ('last_attempt_at', models.DateTimeField(blank=True, null=True)),
                ('next_retry_at', models.DateTimeField(blank=True, null=True)),
                ('last_error', models.TextField(blank=True)),
                ('error_history', models.JSONField(blank=True, default=list)),
                ('expires_at', models.DateTimeField()),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'payments_webhook_retry_item',
                'ordering': ['next_retry_at'],
                'indexes': [models.Index(fields=['status', 'next_retry_at'], name='payments_retry_due')],
                'constraints': [models.UniqueConstraint(fields=('gateway', 'event_id'), name='payments_unique_retry_event')],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('invoice_number', models.CharField(max_length=32, unique=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(max_length=3)),
                ('issued_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('transaction', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='invoice', to='payments.paymenttransaction')),
            ],
            options={
                'db_table': 'payments_invoice',
                'ordering': ['-issued_at'],
            },
        ),
    ]
