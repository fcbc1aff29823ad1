# settlement/urls.py

from django.urls import path
from . import views

urlpatterns = [
    # Customer
    path('bookings/<int:pk>/capture/', views.capture_booking_payment, name='capture_booking_payment'),
    path('wallet/', views.wallet_summary, name='wallet_summary'),
    path('wallet/transactions/', views.wallet_transactions, name='wallet_transactions'),
    path('penalties/', views.outstanding_penalties, name='outstanding_penalties'),

    # Salon owner
    path('salons/<int:salon_id>/balance/', views.salon_balance, name='salon_balance'),
    path('salons/<int:salon_id>/payouts/', views.salon_payouts, name='salon_payouts'),
    path('salons/<int:salon_id>/bank-accounts/', views.salon_bank_accounts, name='salon_bank_accounts'),
    path('salons/<int:salon_id>/bank-accounts/<int:pk>/primary/', views.set_primary_bank_account,
         name='set_primary_bank_account'),
    path('salons/<int:salon_id>/earnings/statement/', views.salon_earnings_statement_pdf,
         name='salon_earnings_statement_pdf'),

    # Admin
    path('admin/payouts/', views.admin_payouts, name='admin_payouts'),
    path('admin/payouts/<int:pk>/<str:action>/', views.admin_payout_action, name='admin_payout_action'),
    path('admin/penalties/remit/', views.admin_remit_penalties, name='admin_remit_penalties'),
    path('admin/penalties/<int:pk>/waive/', views.admin_waive_penalty, name='admin_waive_penalty'),
    path('admin/bank-accounts/<int:pk>/verify/', views.admin_verify_bank_account, name='admin_verify_bank_account'),
    path('admin/payout-schedule/', views.admin_payout_schedule, name='admin_payout_schedule'),
    path('admin/payout-schedule/run/', views.admin_run_payout_schedule, name='admin_run_payout_schedule'),

    # Payout rail
    path('webhooks/payouts/', views.payout_rail_webhook, name='payout_rail_webhook'),
]
