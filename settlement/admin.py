# settlement/admin.py

from django.contrib import admin, messages

from .exceptions import SettlementError
from .models import (
    CustomUser,
    Salon,
    Booking,
    Payment,
    Wallet,
    WalletTransaction,
    CancellationPenalty,
    PenaltyRemittance,
    SalonBankAccount,
    SalonPayout,
    PayoutScheduleSettings,
    Notification,
)
from .services.bank_accounts import verify_account
from .services.payout_approval import approve_payout, complete_payout, fail_payout, reject_payout
from .services.penalties import mark_remitted, waive


def _run_per_object(modeladmin, request, queryset, func, label):
    done = 0
    for obj in queryset:
        try:
            func(obj)
            done += 1
        except SettlementError as e:
            modeladmin.message_user(request, f"{obj}: {e}", level=messages.WARNING)
    modeladmin.message_user(request, f"{label} {done} of {queryset.count()} selected.")


@admin.register(SalonPayout)
class SalonPayoutAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'salon',
        'amount',
        'fee_amount',
        'net_amount',
        'penalty_deduction',
        'payout_method',
        'status',
        'is_automated',
        'created_at',
    )
    list_filter = ('status', 'payout_method', 'is_automated')
    search_fields = ('id', 'salon__name', 'rail_reference', 'transaction_reference')
    readonly_fields = (
        'amount',
        'fee_amount',
        'net_amount',
        'penalty_deduction',
        'rail_reference',
        'rail_payout_id',
        'rail_status',
        'approved_at',
        'processed_at',
    )
    actions = ['approve_selected', 'reject_selected', 'complete_selected', 'fail_selected']

    def approve_selected(self, request, queryset):
        _run_per_object(self, request, queryset, lambda p: approve_payout(p, admin=request.user), "Approved")

    approve_selected.short_description = "Approve selected payouts (pending -> processing)"

    def reject_selected(self, request, queryset):
        _run_per_object(self, request, queryset,
                        lambda p: reject_payout(p, admin=request.user, reason="Rejected in admin"), "Rejected")

    reject_selected.short_description = "Reject selected pending payouts"

    def complete_selected(self, request, queryset):
        _run_per_object(self, request, queryset, lambda p: complete_payout(p, admin=request.user), "Completed")

    complete_selected.short_description = "Mark selected processing payouts as completed"

    def fail_selected(self, request, queryset):
        _run_per_object(self, request, queryset,
                        lambda p: fail_payout(p, "Marked failed in admin", admin=request.user), "Failed")

    fail_selected.short_description = "Mark selected processing payouts as failed"


@admin.register(CancellationPenalty)
class CancellationPenaltyAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'user',
        'originating_salon',
        'penalty_amount',
        'is_paid',
        'paid_via',
        'collecting_salon',
        'remitted_to_platform',
        'is_waived',
    )
    list_filter = ('is_paid', 'paid_via', 'remitted_to_platform', 'is_waived')
    search_fields = ('user__username', 'originating_salon__name', 'collecting_salon__name')
    actions = ['mark_selected_remitted', 'waive_selected']

    def mark_selected_remitted(self, request, queryset):
        try:
            remittances = mark_remitted(queryset.values_list('id', flat=True), recorded_by=request.user,
                                        note="Recorded in admin")
        except SettlementError as e:
            self.message_user(request, str(e), level=messages.ERROR)
            return
        self.message_user(request, f"Recorded {len(remittances)} remittance(s).")

    mark_selected_remitted.short_description = "Mark selected cash penalties as remitted"

    def waive_selected(self, request, queryset):
        _run_per_object(self, request, queryset,
                        lambda p: waive(p, request.user, reason="Waived in admin"), "Waived")

    waive_selected.short_description = "Waive selected unpaid penalties"


@admin.register(SalonBankAccount)
class SalonBankAccountAdmin(admin.ModelAdmin):
    list_display = ('id', 'salon', 'account_type', 'account_holder_name', 'bank_name', 'upi_id',
                    'is_primary', 'is_verified')
    list_filter = ('account_type', 'is_primary', 'is_verified')
    search_fields = ('salon__name', 'account_holder_name', 'ifsc_code', 'upi_id')
    actions = ['verify_selected']

    def verify_selected(self, request, queryset):
        _run_per_object(self, request, queryset, lambda a: verify_account(a, admin=request.user), "Verified")

    verify_selected.short_description = "Verify selected payout destinations"


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'booking', 'salon', 'payment_method', 'gross_amount', 'platform_fee',
                    'salon_amount', 'status', 'captured_at')
    list_filter = ('status', 'payment_method')
    search_fields = ('id', 'booking__id', 'salon__name', 'gateway_payment_id', 'settlement_id')

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'balance', 'total_earned', 'total_spent', 'updated_at')
    search_fields = ('user__username',)
    readonly_fields = ('balance', 'total_earned', 'total_spent')


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ('id', 'wallet', 'type', 'category', 'amount', 'balance_after', 'reference_id', 'created_at')
    list_filter = ('type', 'category')
    search_fields = ('user__username', 'reference_id')


@admin.register(PenaltyRemittance)
class PenaltyRemittanceAdmin(admin.ModelAdmin):
    list_display = ('id', 'salon', 'total_amount', 'payout', 'recorded_by', 'created_at')


@admin.register(PayoutScheduleSettings)
class PayoutScheduleSettingsAdmin(admin.ModelAdmin):
    list_display = ('id', 'is_enabled', 'day_of_week', 'minimum_payout_amount', 'auto_approve_threshold',
                    'last_run_at', 'next_run_at')

    def has_add_permission(self, request):
        return not PayoutScheduleSettings.objects.exists()


@admin.register(Salon)
class SalonAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'owner', 'status', 'is_active', 'created_at')
    list_filter = ('status', 'is_active')
    search_fields = ('name', 'owner__username')


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'salon', 'service_name', 'service_price', 'status', 'payment_status')
    list_filter = ('status', 'payment_status')
    search_fields = ('id', 'user__username', 'salon__name')


@admin.register(CustomUser)
class CustomUserAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'username',
        'email',
        'phone_number',
        'role',
        'is_active',
        'is_staff',
    )
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('username', 'email', 'phone_number')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'message', 'read', 'created_at')
    list_filter = ('read',)
    search_fields = ('user__username', 'message')
