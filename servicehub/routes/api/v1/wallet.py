from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from servicehub.decorators import role_required
from servicehub.models import UserRole
from servicehub.money import to_money
from servicehub.pagination import parse_page_args
from servicehub.services import wallet_service

api_wallet_bp = Blueprint("api_wallet", __name__)


def _transaction_payload(tx):
    return {
        "id": tx.id,
        "type": tx.type,
        "amount": str(to_money(tx.amount)),
        "currency": tx.currency,
        "status": tx.status,
        "description": tx.description,
        "booking_id": tx.booking_id,
        "withdrawal_method": tx.withdrawal_method,
        "transaction_reference": tx.transaction_reference,
        "created_at": tx.created_at.isoformat(),
        "processed_at": tx.processed_at.isoformat() if tx.processed_at else None,
    }


def _history_response(loader):
    page, limit = parse_page_args(request.args.get("page"), request.args.get("limit"))
    items, pagination = loader(current_user.id, page=page, limit=limit)
    return jsonify({"transactions": [_transaction_payload(t) for t in items], "pagination": pagination})


@api_wallet_bp.get("/balance")
@login_required
@role_required(UserRole.PROVIDER)
def balance():
    wallet = wallet_service().balance(current_user.id)
    return jsonify(
        {
            "balance": str(to_money(wallet.balance)),
            "pending_balance": str(to_money(wallet.pending_balance)),
            "total_earnings": str(to_money(wallet.total_earnings)),
            "total_withdrawn": str(to_money(wallet.total_withdrawn)),
            "currency": wallet.currency,
            "is_active": wallet.is_active,
        }
    )


@api_wallet_bp.get("/earnings")
@login_required
@role_required(UserRole.PROVIDER)
def earnings():
    return _history_response(wallet_service().earnings_history)


@api_wallet_bp.get("/transactions")
@login_required
@role_required(UserRole.PROVIDER)
def transactions():
    return _history_response(wallet_service().transaction_history)


@api_wallet_bp.get("/withdrawals")
@login_required
@role_required(UserRole.PROVIDER)
def withdrawals():
    return _history_response(wallet_service().withdrawal_history)


@api_wallet_bp.post("/withdraw")
@login_required
@role_required(UserRole.PROVIDER)
def withdraw():
    payload = request.get_json(silent=True) or {}
    tx = wallet_service().create_withdrawal(
        current_user.id,
        amount=payload.get("amount"),
        method=payload.get("withdrawal_method"),
        details=payload.get("withdrawal_details"),
        description=payload.get("description"),
    )
    return jsonify(_transaction_payload(tx)), 201
