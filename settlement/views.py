# settlement/views.py

import hashlib
import hmac
import json
import logging
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from django.conf import settings
from django.http import HttpResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view, permission_classes, authentication_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from .exceptions import ConcurrencyConflict, SettlementError
from .models import (
    Booking,
    CancellationPenalty,
    Salon,
    SalonBankAccount,
    SalonPayout,
    PayoutScheduleSettings,
)
from .permissions import IsAuthenticatedAndAdmin, IsAuthenticatedAndCustomer, IsAuthenticatedAndSalonOwner
from .serializers import (
    CancellationPenaltySerializer,
    CaptureBookingSerializer,
    PaymentSerializer,
    PayoutRequestSerializer,
    PayoutScheduleSettingsSerializer,
    SalonBankAccountSerializer,
    SalonPayoutSerializer,
    WalletSerializer,
    WalletTransactionSerializer,
)
from .services import penalties as penalty_ledger
from .services.balances import balance_snapshot
from .services.bank_accounts import add_bank_account, set_primary, verify_account
from .services.payout_approval import (
    approve_payout,
    complete_payout,
    fail_payout,
    finalize_payout_from_rail,
    reject_payout,
)
from .services.payouts import create_payout_request
from .services.scheduler import run_scheduled_payouts
from .services.settlement import capture_booking
from .services.wallet import get_or_create_wallet

logger = logging.getLogger(__name__)


def error_response(exc: SettlementError):
    return Response(exc.to_dict(), status=exc.http_status)


def retry_on_conflict(func, *args, **kwargs):
    """Lost a lock race: re-run once with fresh reads, then give up."""
    try:
        return func(*args, **kwargs)
    except ConcurrencyConflict:
        logger.info("Retrying %s after a concurrency conflict", func.__name__)
        return func(*args, **kwargs)


def _salon_for(request, salon_id):
    qs = Salon.objects.filter(pk=salon_id)
    if request.user.role != 'admin':
        qs = qs.filter(owner=request.user)
    return qs.first()


# -------------------------
# CUSTOMER: CAPTURE, WALLET, PENALTIES
# -------------------------

@api_view(['POST'])
@permission_classes([IsAuthenticatedAndCustomer])
def capture_booking_payment(request, pk):
    """
    POST /api/bookings/<id>/capture/
    Body: {payment_method, wallet_amount?, razorpay_payment_id?}

    Declines come back as 402 with {error_code, reason, source, step, retryable};
    a wallet-debited-but-declined split comes back as 409 partial_failure, and a
    charge that was taken but could not be recorded as 409 reconciliation_required.
    """
    try:
        booking = Booking.objects.get(pk=pk, user=request.user)
    except Booking.DoesNotExist:
        return Response({'detail': 'Booking not found.'}, status=404)

    serializer = CaptureBookingSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        payment = retry_on_conflict(
            capture_booking,
            booking,
            data['payment_method'],
            data['wallet_amount'],
            metadata={'razorpay_payment_id': data['razorpay_payment_id']},
        )
    except SettlementError as e:
        body = e.to_dict()
        if e.code in ('gateway_declined', 'partial_failure'):
            body['max_attempts'] = getattr(settings, 'PAYMENT_MAX_ATTEMPTS', 3)
            body['pay_at_salon_available'] = True
        return Response(body, status=e.http_status)

    return Response(PaymentSerializer(payment).data, status=201)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def wallet_summary(request):
    wallet = get_or_create_wallet(request.user)
    return Response(WalletSerializer(wallet).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def wallet_transactions(request):
    wallet = get_or_create_wallet(request.user)
    qs = wallet.transactions.order_by('-created_at', '-id')

    paginator = PageNumberPagination()
    page = paginator.paginate_queryset(qs, request)
    return paginator.get_paginated_response(WalletTransactionSerializer(page, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def outstanding_penalties(request):
    qs = penalty_ledger.outstanding_penalties(request.user).select_related('originating_salon')
    return Response({
        'total': str(penalty_ledger.outstanding_total(request.user)),
        'penalties': CancellationPenaltySerializer(qs, many=True).data,
    })


# -------------------------
# SALON OWNER: BALANCE, PAYOUTS, BANK ACCOUNTS
# -------------------------

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def salon_balance(request, salon_id):
    salon = _salon_for(request, salon_id)
    if salon is None:
        return Response({'detail': 'Salon not found.'}, status=404)
    return Response(balance_snapshot(salon).as_dict())


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def salon_payouts(request, salon_id):
    """
    GET  /api/salons/<id>/payouts/   history, newest first
    POST /api/salons/<id>/payouts/   {amount, payout_method, bank_account?, upi_id?, note?}
    """
    salon = _salon_for(request, salon_id)
    if salon is None:
        return Response({'detail': 'Salon not found.'}, status=404)

    if request.method == 'GET':
        qs = SalonPayout.objects.filter(salon=salon).select_related('bank_account')
        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(qs, request)
        return paginator.get_paginated_response(SalonPayoutSerializer(page, many=True).data)

    if request.user.role != 'salon_owner':
        return Response({'detail': 'Only the salon owner can request payouts.'}, status=403)

    serializer = PayoutRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    bank_account = None
    if data['bank_account']:
        bank_account = SalonBankAccount.objects.filter(pk=data['bank_account'], salon=salon).first()
        if bank_account is None:
            return Response({'detail': 'Bank account not found.'}, status=404)

    try:
        payout = retry_on_conflict(
            create_payout_request,
            salon,
            data['amount'],
            data['payout_method'],
            bank_account=bank_account,
            upi_id=data['upi_id'],
            note=data['note'],
            requested_by=request.user,
        )
    except SettlementError as e:
        return error_response(e)

    return Response(SalonPayoutSerializer(payout).data, status=201)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticatedAndSalonOwner])
def salon_bank_accounts(request, salon_id):
    salon = _salon_for(request, salon_id)
    if salon is None:
        return Response({'detail': 'Salon not found.'}, status=404)

    if request.method == 'GET':
        return Response(SalonBankAccountSerializer(salon.bank_accounts.all(), many=True).data)

    serializer = SalonBankAccountSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        account = add_bank_account(
            salon,
            account_type=data.get('account_type', 'bank'),
            account_holder_name=data['account_holder_name'],
            account_number=data.get('account_number', ''),
            ifsc_code=data.get('ifsc_code', ''),
            upi_id=data.get('upi_id', ''),
        )
    except SettlementError as e:
        return error_response(e)

    return Response(SalonBankAccountSerializer(account).data, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndSalonOwner])
def set_primary_bank_account(request, salon_id, pk):
    salon = _salon_for(request, salon_id)
    if salon is None:
        return Response({'detail': 'Salon not found.'}, status=404)
    try:
        account = salon.bank_accounts.get(pk=pk)
    except SalonBankAccount.DoesNotExist:
        return Response({'detail': 'Bank account not found.'}, status=404)

    account = set_primary(account)
    return Response(SalonBankAccountSerializer(account).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def salon_earnings_statement_pdf(request, salon_id):
    """
    GET /api/salons/<id>/earnings/statement/
    Balance snapshot plus the last payouts, as a PDF.
    """
    salon = _salon_for(request, salon_id)
    if salon is None:
        return Response({'detail': 'Salon not found.'}, status=404)

    snapshot = balance_snapshot(salon)
    payouts = list(SalonPayout.objects.filter(salon=salon)[:15])
    now = timezone.now()

    buffer = BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    # Watermark
    p.saveState()
    p.setFont("Helvetica-Bold", 40)
    p.setFillColorRGB(0.9, 0.9, 0.9)
    p.translate(width / 2, height / 2)
    p.rotate(45)
    p.drawCentredString(0, 0, "GRUMMING")
    p.restoreState()

    p.setFont("Helvetica-Bold", 18)
    p.drawString(50, height - 80, "Grumming Earnings Statement")

    p.setFont("Helvetica", 12)
    p.drawString(50, height - 110, f"Salon: {salon.name}")
    p.drawString(50, height - 130, f"Generated at: {now.isoformat()}")

    rows = [
        ("Total earned", snapshot.total_earned),
        ("  settled", snapshot.settled_earnings),
        ("  awaiting settlement", snapshot.pending_settlement),
        ("Paid out", snapshot.total_paid_out),
        ("Requested (pending)", snapshot.pending_requested),
        ("Cash penalties to remit", snapshot.unremitted_cash_penalties),
        ("Available for payout", snapshot.available),
    ]
    y = height - 170
    for label, value in rows:
        p.drawString(50, y, label)
        p.drawRightString(width - 60, y, f"INR {value}")
        y -= 20

    y -= 20
    p.setFont("Helvetica-Bold", 12)
    p.drawString(50, y, "Recent payouts")
    p.setFont("Helvetica", 10)
    for payout in payouts:
        y -= 16
        if y < 60:
            break
        p.drawString(50, y, f"#{payout.id} {payout.created_at:%Y-%m-%d} {payout.get_payout_method_display()}")
        p.drawString(300, y, payout.get_status_display())
        p.drawRightString(width - 60, y, f"gross {payout.amount} / net {payout.net_amount}")

    p.showPage()
    p.save()
    buffer.seek(0)

    response = HttpResponse(buffer.getvalue(), content_type='application/pdf')
    filename = f"grumming_statement_{salon.id}_{now:%Y%m%d}.pdf"
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


# -------------------
# ADMIN PAYOUT TOOLING
# -------------------

@api_view(['GET'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_payouts(request):
    """
    GET /api/admin/payouts/?status=pending
    """
    qs = SalonPayout.objects.select_related('salon', 'bank_account')
    status_filter = request.GET.get('status')
    if status_filter:
        qs = qs.filter(status=status_filter)

    paginator = PageNumberPagination()
    page = paginator.paginate_queryset(qs, request)
    return paginator.get_paginated_response(SalonPayoutSerializer(page, many=True).data)


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_payout_action(request, pk, action):
    """
    POST /api/admin/payouts/<id>/<approve|reject|complete|fail>/
    """
    try:
        payout = SalonPayout.objects.get(pk=pk)
    except SalonPayout.DoesNotExist:
        return Response({'detail': 'Payout not found.'}, status=404)

    reason = request.data.get('reason', '')
    try:
        if action == 'approve':
            payout = retry_on_conflict(approve_payout, payout, admin=request.user)
        elif action == 'reject':
            payout = retry_on_conflict(reject_payout, payout, admin=request.user, reason=reason)
        elif action == 'complete':
            payout = retry_on_conflict(
                complete_payout, payout, admin=request.user,
                transaction_reference=request.data.get('transaction_reference', ''),
            )
        elif action == 'fail':
            payout = retry_on_conflict(fail_payout, payout, reason, admin=request.user)
        else:
            return Response({'detail': 'Unknown action.'}, status=400)
    except SettlementError as e:
        return error_response(e)

    return Response(SalonPayoutSerializer(payout).data)


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_remit_penalties(request):
    """
    POST /api/admin/penalties/remit/  {penalty_ids: [...], note?}
    """
    ids = request.data.get('penalty_ids') or []
    if not isinstance(ids, list) or not ids:
        return Response({'detail': 'penalty_ids must be a non-empty list.'}, status=400)

    try:
        remittances = penalty_ledger.mark_remitted(ids, recorded_by=request.user,
                                                   note=request.data.get('note', ''))
    except SettlementError as e:
        return error_response(e)

    return Response({
        'remittances': [
            {'id': r.id, 'salon': r.salon_id, 'total_amount': str(r.total_amount)} for r in remittances
        ],
    })


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_waive_penalty(request, pk):
    try:
        penalty = CancellationPenalty.objects.get(pk=pk)
    except CancellationPenalty.DoesNotExist:
        return Response({'detail': 'Penalty not found.'}, status=404)

    try:
        penalty = penalty_ledger.waive(penalty, request.user, reason=request.data.get('reason', ''))
    except SettlementError as e:
        return error_response(e)

    return Response(CancellationPenaltySerializer(penalty).data)


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_verify_bank_account(request, pk):
    try:
        account = SalonBankAccount.objects.get(pk=pk)
    except SalonBankAccount.DoesNotExist:
        return Response({'detail': 'Bank account not found.'}, status=404)

    account = verify_account(account, admin=request.user)
    return Response(SalonBankAccountSerializer(account).data)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_payout_schedule(request):
    schedule = PayoutScheduleSettings.load()
    if request.method == 'GET':
        return Response(PayoutScheduleSettingsSerializer(schedule).data)

    serializer = PayoutScheduleSettingsSerializer(schedule, data=request.data, partial=True)
    serializer.is_valid(raise_exception=True)
    serializer.save()
    return Response(serializer.data)


@api_view(['POST'])
@permission_classes([IsAuthenticatedAndAdmin])
def admin_run_payout_schedule(request):
    """
    POST /api/admin/payout-schedule/run/  {force?: bool}
    """
    schedule = PayoutScheduleSettings.load()
    stats = run_scheduled_payouts(schedule, now=timezone.now(), force=bool(request.data.get('force')))
    return Response(stats)


# -------------------
# PAYOUT RAIL WEBHOOK
# -------------------

def verify_webhook_signature(payload: bytes, signature: str) -> bool:
    secret = getattr(settings, "RAZORPAY_WEBHOOK_SECRET", "")
    if not secret or not signature:
        return False

    computed = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256
    ).hexdigest()

    return hmac.compare_digest(computed, signature)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def payout_rail_webhook(request):
    """
    POST /api/webhooks/payouts/
    RazorpayX `payout.*` events. Replays are harmless.
    """
    raw = request.body
    if not verify_webhook_signature(raw, request.headers.get('X-Razorpay-Signature', '')):
        logger.warning("Rejected payout webhook with a bad signature")
        return Response({'detail': 'Invalid signature.'}, status=400)

    try:
        event = json.loads(raw.decode('utf-8') or '{}')
    except ValueError:
        return Response({'detail': 'Invalid JSON.'}, status=400)

    entity = ((event.get('payload') or {}).get('payout') or {}).get('entity') or {}
    reference = entity.get('reference_id') or entity.get('id')
    status = entity.get('status') or (event.get('event') or '').split('.')[-1]
    if not reference:
        return Response({'detail': 'Ignored.'})

    failure = entity.get('failure_reason') or ((entity.get('status_details') or {}).get('description') or '')
    payout = finalize_payout_from_rail(reference, status, failure_reason=failure, utr=entity.get('utr') or '')
    if payout is None:
        return Response({'detail': 'Unknown payout.'})

    return Response({'detail': 'ok', 'payout': payout.id, 'status': payout.status})
