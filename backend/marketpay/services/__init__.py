from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from marketpay.config import SettlementPolicy
from marketpay.services.payments import PaymentService
from marketpay.services.refunds import RefundService
from marketpay.services.transactions import TransactionQueryService
from marketpay.services.withdrawals import WithdrawalService


@dataclass
class Services:
    policy: SettlementPolicy
    gateway: object
    mailer: object
    payments: PaymentService
    refunds: RefundService
    withdrawals: WithdrawalService
    transactions: TransactionQueryService


def build_services(cfg, gateway, mailer) -> Services:
    policy = SettlementPolicy.from_config(cfg)
    withdrawals = WithdrawalService(gateway)
    return Services(
        policy=policy,
        gateway=gateway,
        mailer=mailer,
        payments=PaymentService(
            gateway,
            policy,
            callback_url=cfg.get("PAYSTACK_CALLBACK_URL", ""),
            withdrawals=withdrawals,
        ),
        refunds=RefundService(gateway, policy),
        withdrawals=withdrawals,
        transactions=TransactionQueryService(),
    )


def services() -> Services:
    return current_app.extensions["marketpay"]
