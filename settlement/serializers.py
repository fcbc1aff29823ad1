# settlement/serializers.py

from decimal import Decimal

from rest_framework import serializers

from .models import (
    Payment,
    Wallet,
    WalletTransaction,
    CancellationPenalty,
    SalonBankAccount,
    SalonPayout,
    PayoutScheduleSettings,
)


class PaymentSerializer(serializers.ModelSerializer):
    penalty_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id',
            'booking',
            'salon',
            'currency',
            'gross_amount',
            'platform_fee',
            'salon_amount',
            'penalty_amount',
            'wallet_amount',
            'charged_amount',
            'status',
            'payment_method',
            'gateway_payment_id',
            'metadata',
            'captured_at',
            'settled_at',
        ]
        read_only_fields = fields


class CaptureBookingSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    wallet_amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0.00'), required=False, default=Decimal('0.00'),
    )
    razorpay_payment_id = serializers.CharField(required=False, allow_blank=True, default='')


class WalletSerializer(serializers.ModelSerializer):
    class Meta:
        model = Wallet
        fields = ['balance', 'total_earned', 'total_spent', 'updated_at']
        read_only_fields = fields


class WalletTransactionSerializer(serializers.ModelSerializer):
    signed_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = WalletTransaction
        fields = [
            'id',
            'amount',
            'signed_amount',
            'type',
            'category',
            'description',
            'reference_id',
            'balance_after',
            'created_at',
        ]
        read_only_fields = fields


class CancellationPenaltySerializer(serializers.ModelSerializer):
    originating_salon_name = serializers.CharField(source='originating_salon.name', read_only=True)

    class Meta:
        model = CancellationPenalty
        fields = [
            'id',
            'booking',
            'originating_salon',
            'originating_salon_name',
            'penalty_amount',
            'penalty_percentage',
            'original_service_price',
            'is_paid',
            'paid_via',
            'paid_at',
            'collecting_salon',
            'remitted_to_platform',
            'is_waived',
            'waived_reason',
            'created_at',
        ]
        read_only_fields = fields


class SalonBankAccountSerializer(serializers.ModelSerializer):
    display_bank_name = serializers.CharField(read_only=True)
    masked_account_number = serializers.SerializerMethodField()

    class Meta:
        model = SalonBankAccount
        fields = [
            'id',
            'account_type',
            'account_holder_name',
            'account_number',
            'masked_account_number',
            'ifsc_code',
            'upi_id',
            'bank_name',
            'display_bank_name',
            'branch',
            'city',
            'state',
            'is_primary',
            'is_verified',
            'created_at',
        ]
        read_only_fields = [
            'bank_name',
            'branch',
            'city',
            'state',
            'is_primary',
            'is_verified',
            'created_at',
        ]
        extra_kwargs = {
            'account_number': {'write_only': True, 'required': False},
            'ifsc_code': {'required': False},
            'upi_id': {'required': False},
        }

    def get_masked_account_number(self, obj):
        if not obj.account_number:
            return ''
        return f"****{obj.account_number[-4:]}"


class SalonPayoutSerializer(serializers.ModelSerializer):
    destination = serializers.CharField(source='destination_label', read_only=True)

    class Meta:
        model = SalonPayout
        fields = [
            'id',
            'salon',
            'amount',
            'fee_amount',
            'net_amount',
            'penalty_deduction',
            'status',
            'payout_method',
            'bank_account',
            'upi_id',
            'destination',
            'period_start',
            'period_end',
            'notes',
            'is_automated',
            'rail_reference',
            'rail_status',
            'transaction_reference',
            'failure_reason',
            'created_at',
            'approved_at',
            'processed_at',
        ]
        read_only_fields = fields


class PayoutRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    payout_method = serializers.ChoiceField(choices=SalonPayout.METHOD_CHOICES)
    bank_account = serializers.IntegerField(required=False, allow_null=True, default=None)
    upi_id = serializers.CharField(required=False, allow_blank=True, default='')
    note = serializers.CharField(required=False, allow_blank=True, default='')


class PayoutScheduleSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutScheduleSettings
        fields = [
            'is_enabled',
            'day_of_week',
            'minimum_payout_amount',
            'auto_approve_threshold',
            'last_run_at',
            'next_run_at',
        ]
        read_only_fields = ['last_run_at', 'next_run_at']

    def validate_day_of_week(self, value):
        if value > 6:
            raise serializers.ValidationError('day_of_week must be 0 (Sunday) to 6 (Saturday).')
        return value

    def validate_minimum_payout_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError('Minimum payout amount must be positive.')
        return value
