from decimal import Decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="CustomUser",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(default=False, help_text="Designates that this user has all permissions without explicitly assigning them.", verbose_name="superuser status")),
                ("username", models.CharField(error_messages={"unique": "A user with that username already exists."}, help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.", max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name="username")),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="first name")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="last name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                ("is_staff", models.BooleanField(default=False, help_text="Designates whether the user can log into this admin site.", verbose_name="staff status")),
                ("is_active", models.BooleanField(default=True, help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.", verbose_name="active")),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("role", models.CharField(choices=[("customer", "Customer"), ("salon_owner", "Salon Owner"), ("admin", "Admin")], default="customer", max_length=12)),
                ("phone_number", models.CharField(blank=True, max_length=15, null=True)),
                ("groups", models.ManyToManyField(blank=True, help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.", related_name="user_set", related_query_name="user", to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(blank=True, help_text="Specific permissions for this user.", related_name="user_set", related_query_name="user", to="auth.permission", verbose_name="user permissions")),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "abstract": False,
            },
            managers=[
                ("objects", django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="Salon",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("is_active", models.BooleanField(default=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")], default="pending", max_length=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="salons", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("service_name", models.CharField(max_length=200)),
                ("service_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("confirmed", "Confirmed"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="pending", max_length=10)),
                ("payment_status", models.CharField(choices=[("unpaid", "Unpaid"), ("paid", "Paid"), ("pay_at_salon", "Pay at salon")], default="unpaid", max_length=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("salon", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bookings", to="settlement.salon")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bookings", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("gross_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(decimal_places=2, max_digits=12)),
                ("salon_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("fee_percentage", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=5)),
                ("wallet_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("charged_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("status", models.CharField(choices=[("authorized", "Authorized"), ("captured", "Captured"), ("settled", "Settled"), ("failed", "Failed")], default="captured", max_length=10)),
                ("payment_method", models.CharField(choices=[("upi", "UPI"), ("wallet_only", "Wallet only"), ("cash_at_salon", "Cash at salon")], max_length=14)),
                ("gateway_payment_id", models.CharField(blank=True, default="", max_length=100)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("settlement_id", models.CharField(blank=True, default="", max_length=100)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("booking", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="payment", to="settlement.booking")),
                ("payer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payments", to=settings.AUTH_USER_MODEL)),
                ("salon", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="settlement.salon")),
            ],
            options={
                "indexes": [models.Index(fields=["salon", "status"], name="stl_payment_salon_status_idx")],
            },
        ),
        migrations.CreateModel(
            name="Wallet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("total_earned", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("total_spent", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="wallet", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="WalletTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("type", models.CharField(choices=[("credit", "Credit"), ("debit", "Debit")], max_length=6)),
                ("category", models.CharField(choices=[("referral_bonus", "Referral bonus"), ("referee_bonus", "Referee bonus"), ("promo_code", "Promo code"), ("booking_discount", "Booking discount"), ("booking_payment", "Booking payment"), ("cashback", "Cashback"), ("refund", "Refund"), ("manual", "Manual")], max_length=20)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("reference_id", models.CharField(blank=True, default="", max_length=64)),
                ("balance_after", models.DecimalField(decimal_places=2, max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="wallet_transactions", to=settings.AUTH_USER_MODEL)),
                ("wallet", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="settlement.wallet")),
            ],
            options={
                "indexes": [models.Index(fields=["wallet", "category", "reference_id"], name="stl_wtxn_wallet_cat_ref_idx")],
            },
        ),
        migrations.CreateModel(
            name="SalonBankAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("account_type", models.CharField(choices=[("bank", "Bank account"), ("upi", "UPI only")], default="bank", max_length=4)),
                ("account_holder_name", models.CharField(max_length=200)),
                ("account_number", models.CharField(blank=True, default="", max_length=34)),
                ("ifsc_code", models.CharField(blank=True, default="", max_length=11)),
                ("upi_id", models.CharField(blank=True, default="", max_length=100)),
                ("bank_name", models.CharField(blank=True, default="", max_length=200)),
                ("branch", models.CharField(blank=True, default="", max_length=200)),
                ("city", models.CharField(blank=True, default="", max_length=100)),
                ("state", models.CharField(blank=True, default="", max_length=100)),
                ("is_primary", models.BooleanField(default=False)),
                ("is_verified", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("salon", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bank_accounts", to="settlement.salon")),
            ],
            options={
                "ordering": ["-is_primary", "created_at"],
            },
        ),
        migrations.CreateModel(
            name="SalonPayout",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("fee_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("net_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("penalty_deduction", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=10)),
                ("payout_method", models.CharField(choices=[("bank_transfer", "Bank transfer"), ("upi", "UPI"), ("instant_upi", "Instant UPI")], max_length=13)),
                ("upi_id", models.CharField(blank=True, default="", max_length=100)),
                ("period_start", models.DateField(blank=True, null=True)),
                ("period_end", models.DateField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("is_automated", models.BooleanField(default=False)),
                ("rail_reference", models.CharField(blank=True, default="", max_length=100)),
                ("rail_payout_id", models.CharField(blank=True, default="", max_length=100)),
                ("rail_status", models.CharField(blank=True, default="", max_length=30)),
                ("transaction_reference", models.CharField(blank=True, default="", max_length=100)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("bank_account", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="payouts", to="settlement.salonbankaccount")),
                ("processed_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="processed_payouts", to=settings.AUTH_USER_MODEL)),
                ("requested_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="requested_payouts", to=settings.AUTH_USER_MODEL)),
                ("salon", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payouts", to="settlement.salon")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["salon", "status"], name="stl_payout_salon_status_idx"),
                    models.Index(fields=["rail_reference"], name="stl_payout_rail_ref_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CancellationPenalty",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("penalty_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("penalty_percentage", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=5)),
                ("original_service_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("is_paid", models.BooleanField(default=False)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("paid_via", models.CharField(blank=True, choices=[("platform", "Platform"), ("cash", "Cash at salon")], max_length=8, null=True)),
                ("is_waived", models.BooleanField(default=False)),
                ("waived_at", models.DateTimeField(blank=True, null=True)),
                ("waived_reason", models.TextField(blank=True, default="")),
                ("remitted_to_platform", models.BooleanField(default=False)),
                ("remitted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("booking", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="penalties", to="settlement.booking")),
                ("collecting_salon", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="collected_penalties", to="settlement.salon")),
                ("originating_salon", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="originated_penalties", to="settlement.salon")),
                ("paid_booking", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="cleared_penalties", to="settlement.booking")),
                ("remitted_payout", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="netted_penalties", to="settlement.salonpayout")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="cancellation_penalties", to=settings.AUTH_USER_MODEL)),
                ("waived_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="waived_penalties", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["user", "is_paid"], name="stl_penalty_user_paid_idx"),
                    models.Index(fields=["collecting_salon", "paid_via", "remitted_to_platform"], name="stl_penalty_cash_remit_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PenaltyRemittance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("note", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("payout", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="penalty_remittances", to="settlement.salonpayout")),
                ("penalties", models.ManyToManyField(related_name="remittances", to="settlement.cancellationpenalty")),
                ("recorded_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="recorded_remittances", to=settings.AUTH_USER_MODEL)),
                ("salon", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="penalty_remittances", to="settlement.salon")),
            ],
        ),
        migrations.CreateModel(
            name="PayoutScheduleSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("is_enabled", models.BooleanField(default=False)),
                ("day_of_week", models.PositiveSmallIntegerField(default=1)),
                ("minimum_payout_amount", models.DecimalField(decimal_places=2, default=Decimal("500.00"), max_digits=12)),
                ("auto_approve_threshold", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("last_run_at", models.DateTimeField(blank=True, null=True)),
                ("next_run_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name_plural": "payout schedule settings",
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("message", models.TextField()),
                ("notification_type", models.CharField(default="info", max_length=40)),
                ("read", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to=settings.AUTH_USER_MODEL)),
            ],
        ),
    ]
