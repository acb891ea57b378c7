from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, abort
from flask_login import current_user

from accounts import student_required
from billing import (
    PAYMENT_METHODS,
    bill_summary,
    daily_breakdown,
    find_bill,
    generate_bill,
    latest_receipt,
    month_label,
    monthly_total,
    normalize_month,
    pay_bill,
)
from errors import MessError
from menus import get_menu
from models import db, Bill, Payment, Token
from notices import send_token_notice, student_warnings
from tokens import cancel_own_token, request_token, student_tokens

student_bp = Blueprint("student", __name__)


def _month_arg():
    raw = request.values.get("month")
    return normalize_month(raw) if raw else normalize_month(date.today())


def _own_bill(bill_id):
    bill = db.get_or_404(Bill, bill_id)
    if bill.user_id != current_user.user_id:
        abort(404)
    return bill


def selections_from_form(form):
    """``qty_<menu_id>`` fields of the menu form; empty and zero are unpicked."""
    picked = {}
    for key, value in form.items():
        if key.startswith("qty_") and value.strip() not in ("", "0"):
            picked[key[4:]] = value.strip()
    return picked


@student_bp.route("/dashboard")
@student_required
def dashboard():
    month = normalize_month(date.today())
    upcoming = [t for t in student_tokens(current_user) if t.token_date >= date.today() and t.status != "cancelled"]
    bill = find_bill(current_user, month)
    return render_template(
        "student/dashboard.html",
        upcoming=upcoming,
        month=month,
        month_name=month_label(month),
        running_total=monthly_total(current_user, month),
        bill=bill,
        summary=bill_summary(bill) if bill else None,
        warnings=student_warnings(current_user)[:3],
    )


@student_bp.route("/menu", methods=["GET", "POST"])
@student_required
def menu():
    meal_type = request.values.get("meal_type", "")
    day = request.values.get("date", "")
    if request.method == "POST":
        try:
            token = request_token(current_user, day, meal_type, selections_from_form(request.form))
        except MessError as exc:
            flash(exc.detail, "error")
            return redirect(url_for("student.menu", meal_type=meal_type, date=day))
        send_token_notice(current_user, token)
        return render_template("student/token_success.html", token=token)

    items = []
    if meal_type and day:
        try:
            items = get_menu(current_user.hall_id, day, meal_type, only_available=True)
        except MessError as exc:
            flash(exc.detail, "error")
    return render_template("student/menu.html", items=items, meal_type=meal_type, day=day)


@student_bp.route("/tokens")
@student_required
def tokens():
    month = request.args.get("month") or None
    return render_template("student/tokens.html", tokens=student_tokens(current_user, month), month=month or "")


@student_bp.route("/tokens/<int:token_id>/cancel", methods=["POST"])
@student_required
def cancel_token(token_id):
    token = db.get_or_404(Token, token_id)
    if token.user_id != current_user.user_id:
        abort(404)
    cancel_own_token(current_user, token)
    flash(f"Token {token.token} cancelled", "success")
    return redirect(url_for("student.tokens"))


@student_bp.route("/bills")
@student_required
def bills():
    month = _month_arg()
    bill = find_bill(current_user, month)
    days = daily_breakdown(current_user, month)
    return render_template(
        "student/bills.html",
        month=month,
        month_name=month_label(month),
        days=days,
        total=round(sum(d.total_amount for d in days), 2),
        bill=bill,
        summary=bill_summary(bill) if bill else None,
        receipt=latest_receipt(bill) if bill and bill.is_paid else None,
    )


@student_bp.route("/bills/generate", methods=["POST"])
@student_required
def generate():
    month = _month_arg()
    generate_bill(current_user, month)
    flash("Monthly bill generated successfully!", "success")
    return redirect(url_for("student.bills", month=month))


@student_bp.route("/bills/<int:bill_id>/pay", methods=["GET", "POST"])
@student_required
def pay(bill_id):
    bill = _own_bill(bill_id)
    if request.method == "GET":
        if bill.is_paid:
            flash("This bill is already paid", "error")
            return redirect(url_for("student.bills", month=bill.bill_month))
        return render_template(
            "student/pay.html", bill=bill, methods=PAYMENT_METHODS, summary=bill_summary(bill),
            month_name=month_label(bill.bill_month),
        )

    try:
        payment = pay_bill(current_user, bill, request.form.get("method"), request.form.get("amount"))
    except MessError as exc:
        flash(exc.detail, "error")
        return redirect(url_for("student.pay", bill_id=bill.bill_id))
    flash(f"Payment successful! Total paid: {payment.amount:.2f} ৳", "success")
    return redirect(url_for("student.receipt", payment_id=payment.payment_id))


@student_bp.route("/payments/<int:payment_id>")
@student_required
def receipt(payment_id):
    payment = db.get_or_404(Payment, payment_id)
    if payment.bill.user_id != current_user.user_id:
        abort(404)
    return render_template(
        "student/receipt.html", payment=payment, bill=payment.bill, methods=PAYMENT_METHODS,
        month_name=month_label(payment.bill.bill_month),
    )


@student_bp.route("/warnings")
@student_required
def warnings():
    return render_template("student/warnings.html", warnings=student_warnings(current_user))
