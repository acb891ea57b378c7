from flask import Blueprint, request, jsonify, abort
from flask_login import current_user

from accounts import manager_required, student_required
from billing import (
    bill_summary,
    daily_breakdown,
    find_bill,
    generate_bill,
    normalize_month,
    pay_bill,
)
from errors import EmptySelection, InvalidQuantity
from menus import get_menu
from models import db, Bill, Token
from notices import send_token_notice
from tokens import request_token, set_status, tokens_for_day

api_bp = Blueprint("api", __name__)


def _payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _selections(items):
    """``items`` is either ``[{"menu_id": 1, "quantity": 2}, ...]`` or
    ``{"1": 2}``; repeated ids are added up by ``parse_selections``."""
    if isinstance(items, dict):
        return items
    if not isinstance(items, list):
        raise EmptySelection()
    pairs = []
    for entry in items:
        if not isinstance(entry, dict):
            raise InvalidQuantity()
        pairs.append((entry.get("menu_id"), entry.get("quantity", 1)))
    return pairs


@api_bp.route("/menu")
@student_required
def menu():
    items = get_menu(
        current_user.hall_id, request.args.get("date", ""), request.args.get("meal_type", ""), only_available=True
    )
    return jsonify({"items": [item.to_dict() for item in items]})


@api_bp.route("/tokens", methods=["POST"])
@student_required
def create_token():
    data = _payload()
    selections = _selections(data.get("items") or [])
    token = request_token(current_user, data.get("date", ""), data.get("meal_type", ""), selections)
    send_token_notice(current_user, token)
    return jsonify(token.to_dict()), 201


@api_bp.route("/tokens")
@manager_required
def list_tokens():
    rows = tokens_for_day(
        current_user.hall_id,
        request.args.get("date", ""),
        request.args.get("meal_type", ""),
        request.args.get("status") or None,
    )
    tokens = []
    for token in rows:
        data = token.to_dict()
        data["user"] = {"name": token.user.name, "registration_no": token.user.registration_no}
        tokens.append(data)
    return jsonify({"tokens": tokens})


@api_bp.route("/tokens/<int:token_id>", methods=["PATCH"])
@manager_required
def update_token(token_id):
    token = db.get_or_404(Token, token_id)
    if token.hall_id != current_user.hall_id:
        abort(403)
    set_status(current_user, token, _payload().get("status"))
    return jsonify(token.to_dict())


@api_bp.route("/bills/<month>")
@student_required
def month_bill(month):
    month = normalize_month(month)
    days = daily_breakdown(current_user, month)
    bill = find_bill(current_user, month)
    return jsonify({
        "month": month,
        "days": [
            {
                "date": day.date.isoformat(),
                "total_amount": day.total_amount,
                "tokens": [token.to_dict() for token in day.tokens],
            }
            for day in days
        ],
        "total_amount": round(sum(day.total_amount for day in days), 2),
        "bill": bill.to_dict() if bill else None,
        "due": bill_summary(bill) if bill else None,
    })


@api_bp.route("/bills/<month>/generate", methods=["POST"])
@student_required
def generate(month):
    bill = generate_bill(current_user, month)
    return jsonify(bill.to_dict())


@api_bp.route("/bills/<int:bill_id>/pay", methods=["POST"])
@student_required
def pay(bill_id):
    bill = db.get_or_404(Bill, bill_id)
    if bill.user_id != current_user.user_id:
        abort(403)
    data = _payload()
    payment = pay_bill(current_user, bill, data.get("method"), data.get("amount"))
    return jsonify({"payment": payment.to_dict(), "bill": bill.to_dict()}), 201
