# settlement/models.py

from decimal import Decimal

from django.db import models
from django.contrib.auth.models import AbstractUser
from django.conf import settings
from django.utils import timezone

ZERO = Decimal("0.00")


# Custom user model (extends AbstractUser)
class CustomUser(AbstractUser):
    ROLE_CHOICES = (
        ('customer', 'Customer'),
        ('salon_owner', 'Salon Owner'),
        ('admin', 'Admin'),
    )
    role = models.CharField(max_length=12, choices=ROLE_CHOICES, default='customer')
    phone_number = models.CharField(max_length=15, blank=True, null=True)

    def __str__(self):
        return self.username


# Salon (catalog data lives elsewhere; only what the ledgers need)
class Salon(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='salons',
    )
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


# Booking (scheduling lives elsewhere; this is the capture input)
class Booking(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    )

    PAYMENT_STATUS_CHOICES = (
        ('unpaid', 'Unpaid'),
        ('paid', 'Paid'),
        ('pay_at_salon', 'Pay at salon'),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bookings',
    )
    salon = models.ForeignKey(Salon, on_delete=models.CASCADE, related_name='bookings')
    service_name = models.CharField(max_length=200)
    service_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    payment_status = models.CharField(max_length=12, choices=PAYMENT_STATUS_CHOICES, default='unpaid')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Booking #{self.id} at {self.salon} ({self.service_name})"


# =============================================================================
# SETTLEMENT LEDGER
# =============================================================================

class Payment(models.Model):
    STATUS_CHOICES = (
        ('authorized', 'Authorized'),
        ('captured', 'Captured'),
        ('settled', 'Settled'),
        ('failed', 'Failed'),
    )

    METHOD_UPI = 'upi'
    METHOD_WALLET_ONLY = 'wallet_only'
    METHOD_CASH_AT_SALON = 'cash_at_salon'
    METHOD_CHOICES = (
        (METHOD_UPI, 'UPI'),
        (METHOD_WALLET_ONLY, 'Wallet only'),
        (METHOD_CASH_AT_SALON, 'Cash at salon'),
    )

    # one payment per booking: capture is idempotent by booking id
    booking = models.OneToOneField(Booking, on_delete=models.PROTECT, related_name='payment')
    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='payments',
    )
    salon = models.ForeignKey(Salon, on_delete=models.PROTECT, related_name='payments')

    currency = models.CharField(max_length=3, default='INR')
    gross_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)
    salon_amount = models.DecimalField(max_digits=12, decimal_places=2)
    fee_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    wallet_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    charged_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='captured')
    payment_method = models.CharField(max_length=14, choices=METHOD_CHOICES)
    gateway_payment_id = models.CharField(max_length=100, blank=True, default='')

    # {"serviceAmount": "...", "penaltyAmount": "...", "penaltyIds": [...]}
    metadata = models.JSONField(default=dict, blank=True)

    captured_at = models.DateTimeField(null=True, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    settlement_id = models.CharField(max_length=100, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['salon', 'status'], name='stl_payment_salon_status_idx'),
        ]

    def __str__(self):
        return f"Payment #{self.id} for booking #{self.booking_id} ({self.status})"

    @property
    def penalty_amount(self) -> Decimal:
        return Decimal(str((self.metadata or {}).get('penaltyAmount') or '0.00'))

    def is_balanced(self) -> bool:
        return self.salon_amount + self.platform_fee == self.gross_amount


# =============================================================================
# WALLET LEDGER
# =============================================================================

class Wallet(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='wallet',
    )
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    total_earned = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    total_spent = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Wallet of {self.user} ({self.balance})"


class WalletTransaction(models.Model):
    TYPE_CHOICES = (
        ('credit', 'Credit'),
        ('debit', 'Debit'),
    )

    CATEGORY_CHOICES = (
        ('referral_bonus', 'Referral bonus'),
        ('referee_bonus', 'Referee bonus'),
        ('promo_code', 'Promo code'),
        ('booking_discount', 'Booking discount'),
        ('booking_payment', 'Booking payment'),
        ('cashback', 'Cashback'),
        ('refund', 'Refund'),
        ('manual', 'Manual'),
    )

    wallet = models.ForeignKey(Wallet, on_delete=models.PROTECT, related_name='transactions')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='wallet_transactions',
    )
    # always positive; direction is carried by `type`
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    type = models.CharField(max_length=6, choices=TYPE_CHOICES)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    description = models.CharField(max_length=255, blank=True, default='')
    reference_id = models.CharField(max_length=64, blank=True, default='')
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['wallet', 'category', 'reference_id'], name='stl_wtxn_wallet_cat_ref_idx'),
        ]

    def __str__(self):
        return f"{self.type} {self.amount} ({self.category}) on wallet #{self.wallet_id}"

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == 'credit' else -self.amount


# =============================================================================
# PENALTY LEDGER
# =============================================================================

class CancellationPenalty(models.Model):
    PAID_VIA_CHOICES = (
        ('platform', 'Platform'),
        ('cash', 'Cash at salon'),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='cancellation_penalties',
    )
    booking = models.ForeignKey(
        Booking,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='penalties',
    )
    originating_salon = models.ForeignKey(
        Salon,
        on_delete=models.PROTECT,
        related_name='originated_penalties',
    )
    # set only when the customer paid the penalty in cash at some salon's counter
    collecting_salon = models.ForeignKey(
        Salon,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='collected_penalties',
    )

    penalty_amount = models.DecimalField(max_digits=12, decimal_places=2)
    penalty_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    original_service_price = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    paid_via = models.CharField(max_length=8, choices=PAID_VIA_CHOICES, null=True, blank=True)
    paid_booking = models.ForeignKey(
        Booking,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='cleared_penalties',
    )

    is_waived = models.BooleanField(default=False)
    waived_at = models.DateTimeField(null=True, blank=True)
    waived_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='waived_penalties',
    )
    waived_reason = models.TextField(blank=True, default='')

    remitted_to_platform = models.BooleanField(default=False)
    remitted_at = models.DateTimeField(null=True, blank=True)
    # payout this cash penalty is being netted against (pending/processing/completed)
    remitted_payout = models.ForeignKey(
        'SalonPayout',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='netted_penalties',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'is_paid'], name='stl_penalty_user_paid_idx'),
            models.Index(fields=['collecting_salon', 'paid_via', 'remitted_to_platform'], name='stl_penalty_cash_remit_idx'),
        ]

    def __str__(self):
        return f"Penalty #{self.id} of {self.penalty_amount} for {self.user}"

    @property
    def is_outstanding(self) -> bool:
        return not self.is_paid and not self.is_waived


class PenaltyRemittance(models.Model):
    salon = models.ForeignKey(Salon, on_delete=models.PROTECT, related_name='penalty_remittances')
    payout = models.ForeignKey(
        'SalonPayout',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='penalty_remittances',
    )
    penalties = models.ManyToManyField(CancellationPenalty, related_name='remittances')
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    note = models.TextField(blank=True, default='')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_remittances',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Remittance #{self.id} of {self.total_amount} by {self.salon}"


# =============================================================================
# PAYOUTS
# =============================================================================

class SalonBankAccount(models.Model):
    ACCOUNT_TYPE_CHOICES = (
        ('bank', 'Bank account'),
        ('upi', 'UPI only'),
    )

    salon = models.ForeignKey(Salon, on_delete=models.CASCADE, related_name='bank_accounts')
    account_type = models.CharField(max_length=4, choices=ACCOUNT_TYPE_CHOICES, default='bank')
    account_holder_name = models.CharField(max_length=200)
    account_number = models.CharField(max_length=34, blank=True, default='')
    ifsc_code = models.CharField(max_length=11, blank=True, default='')
    upi_id = models.CharField(max_length=100, blank=True, default='')

    # directory display metadata; empty when the lookup was unavailable
    bank_name = models.CharField(max_length=200, blank=True, default='')
    branch = models.CharField(max_length=200, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    state = models.CharField(max_length=100, blank=True, default='')

    is_primary = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_primary', 'created_at']

    def __str__(self):
        if self.account_type == 'upi':
            return f"{self.account_holder_name} ({self.upi_id})"
        return f"{self.account_holder_name} (****{self.account_number[-4:]})"

    @property
    def display_bank_name(self) -> str:
        return self.bank_name or "Unverified bank"


class SalonPayout(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    )
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

    METHOD_BANK_TRANSFER = 'bank_transfer'
    METHOD_UPI = 'upi'
    METHOD_INSTANT_UPI = 'instant_upi'
    METHOD_CHOICES = (
        (METHOD_BANK_TRANSFER, 'Bank transfer'),
        (METHOD_UPI, 'UPI'),
        (METHOD_INSTANT_UPI, 'Instant UPI'),
    )

    salon = models.ForeignKey(Salon, on_delete=models.PROTECT, related_name='payouts')

    # gross requested amount: the ledger-affecting quantity
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    fee_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    net_amount = models.DecimalField(max_digits=12, decimal_places=2)
    # unremitted cash penalties netted against this payout
    penalty_deduction = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payout_method = models.CharField(max_length=13, choices=METHOD_CHOICES)
    bank_account = models.ForeignKey(
        SalonBankAccount,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payouts',
    )
    upi_id = models.CharField(max_length=100, blank=True, default='')

    period_start = models.DateField(null=True, blank=True)
    period_end = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    is_automated = models.BooleanField(default=False)

    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='requested_payouts',
    )
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_payouts',
    )

    rail_reference = models.CharField(max_length=100, blank=True, default='')
    rail_payout_id = models.CharField(max_length=100, blank=True, default='')
    rail_status = models.CharField(max_length=30, blank=True, default='')
    transaction_reference = models.CharField(max_length=100, blank=True, default='')
    failure_reason = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['salon', 'status'], name='stl_payout_salon_status_idx'),
            models.Index(fields=['rail_reference'], name='stl_payout_rail_ref_idx'),
        ]

    def __str__(self):
        return f"Payout #{self.id} {self.amount} to {self.salon} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def obligation(self) -> Decimal:
        """Gross amount this payout discharges from the salon's earnings."""
        return self.amount + self.penalty_deduction

    @property
    def destination_label(self) -> str:
        if self.upi_id:
            return self.upi_id
        if self.bank_account_id:
            return str(self.bank_account)
        return ""


class PayoutScheduleSettings(models.Model):
    """
    Process-wide payout schedule. Always row pk=1; use `load()`.

    day_of_week: 0=Sunday .. 6=Saturday.
    """
    is_enabled = models.BooleanField(default=False)
    day_of_week = models.PositiveSmallIntegerField(default=1)
    minimum_payout_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("500.00"))
    auto_approve_threshold = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    last_run_at = models.DateTimeField(null=True, blank=True)
    next_run_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "payout schedule settings"

    def __str__(self):
        state = "enabled" if self.is_enabled else "disabled"
        return f"Payout schedule ({state}, day {self.day_of_week})"

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls) -> "PayoutScheduleSettings":
        obj, _ = cls.objects.get_or_create(pk=1)
        return obj

    def is_scheduled_day(self, now=None) -> bool:
        now = now or timezone.now()
        # isoweekday: Monday=1 .. Sunday=7 -> Sunday=0
        return now.isoweekday() % 7 == self.day_of_week


# Notification model
class Notification(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE)
    message = models.TextField()
    notification_type = models.CharField(max_length=40, default='info')
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user} - {self.message[:30]}"
