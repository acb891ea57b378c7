"""Monthly bills built from approved meal tokens.

A bill is one row per (student, month).  Its total is always derived from the
line items of the student's *approved* tokens dated inside that month, so the
functions here either compute that figure or bring a stored bill in line with
it.  Paid bills are frozen and never recomputed.
"""
import calendar
import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import groupby
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from errors import (
    BillAccessDenied,
    BillAlreadyPaid,
    InvalidMonth,
    InvalidPaymentMethod,
    NothingToBill,
    PaymentAmountMismatch,
)
from models import db, Bill, Payment, Token, User, BILL_STATUSES

MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

PAYMENT_METHODS = {
    "bkash": "bKash",
    "nagad": "Nagad",
    "rocket": "Rocket",
    "card": "Credit/Debit Card",
    "bank": "Bank Transfer",
}

_ISO_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")
_NAMED_MONTH = re.compile(r"^([a-z]+)[\s_-]+(\d{4})$")


@dataclass
class DailyBill:
    date: date
    tokens: List[Token] = field(default_factory=list)
    total_amount: float = 0.0


def _money(value) -> float:
    return round(float(value or 0), 2)


def normalize_month(value) -> str:
    """Return the canonical ``YYYY-MM`` key for a month.

    Accepts the value of an html month input (``2025-01``), the older
    ``january_2025`` / ``january-2025`` keys, ``January 2025`` and
    ``date``/``datetime`` objects.
    """
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"

    text = (value or "").strip().lower()
    match = _ISO_MONTH.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
    else:
        match = _NAMED_MONTH.match(text)
        if not match:
            raise InvalidMonth()
        name, year = match.group(1), int(match.group(2))
        candidates = [i for i, full in enumerate(MONTH_NAMES, start=1) if full == name or full[:3] == name]
        if not candidates:
            raise InvalidMonth()
        month = candidates[0]

    if not 1 <= month <= 12 or year < 1:
        raise InvalidMonth()
    return f"{year:04d}-{month:02d}"


def split_month(month):
    key = normalize_month(month)
    year, mon = key.split("-")
    return int(year), int(mon)


def month_bounds(month):
    year, mon = split_month(month)
    return date(year, mon, 1), date(year, mon, calendar.monthrange(year, mon)[1])


def month_label(month) -> str:
    year, mon = split_month(month)
    return f"{MONTH_NAMES[mon - 1].title()} {year}"


def due_date_for(month, due_day: Optional[int] = None) -> date:
    """Bills fall due on ``BILL_DUE_DAY`` of the month after the billed one."""
    if due_day is None:
        due_day = current_app.config.get("BILL_DUE_DAY", 15)
    year, mon = split_month(month)
    if mon == 12:
        year, mon = year + 1, 1
    else:
        mon += 1
    day = max(1, min(int(due_day), calendar.monthrange(year, mon)[1]))
    return date(year, mon, day)


def token_total(token: Token) -> float:
    return _money(sum(item.price * item.quantity for item in token.items))


def approved_tokens(user: User, month) -> List[Token]:
    start, end = month_bounds(month)
    return (
        Token.query.filter(
            Token.user_id == user.user_id,
            Token.status == "approved",
            Token.token_date >= start,
            Token.token_date <= end,
        )
        .order_by(Token.token_date, Token.token_id)
        .all()
    )


def daily_breakdown(user: User, month) -> List[DailyBill]:
    days = []
    for day, group in groupby(approved_tokens(user, month), key=lambda t: t.token_date):
        tokens = list(group)
        days.append(DailyBill(date=day, tokens=tokens, total_amount=_money(sum(token_total(t) for t in tokens))))
    return days


def monthly_total(user: User, month) -> float:
    return _money(sum(day.total_amount for day in daily_breakdown(user, month)))


def find_bill(user: User, month) -> Optional[Bill]:
    return Bill.query.filter_by(user_id=user.user_id, bill_month=normalize_month(month)).first()


def is_month_locked(user_id: int, on_date: date) -> bool:
    """True when the bill covering ``on_date`` has already been paid."""
    return (
        Bill.query.filter_by(user_id=user_id, bill_month=normalize_month(on_date), status="paid").first()
        is not None
    )


def refresh_bill(bill: Bill, total: Optional[float] = None) -> Bill:
    """Bring an unpaid bill's total in line with the student's approved tokens."""
    if bill.is_paid:
        return bill
    if total is None:
        total = monthly_total(bill.user, bill.bill_month)
    if _money(bill.total_amount) != _money(total):
        current_app.logger.info(
            "bill %s for user %s %s: total %.2f -> %.2f",
            bill.bill_id, bill.user_id, bill.bill_month, bill.total_amount, total,
        )
        bill.total_amount = _money(total)
        db.session.commit()
    return bill


def generate_bill(user: User, month) -> Bill:
    """Create the bill for ``month`` or refresh the existing one.

    Safe to call repeatedly; there is never more than one bill per student
    and month.
    """
    key = normalize_month(month)
    total = monthly_total(user, key)
    bill = find_bill(user, key)
    if bill is None:
        if total <= 0:
            raise NothingToBill()
        bill = Bill(
            user_id=user.user_id,
            bill_month=key,
            total_amount=total,
            status="unpaid",
            due_date=due_date_for(key),
            generated_at=datetime.utcnow(),
        )
        db.session.add(bill)
        try:
            db.session.commit()
        except IntegrityError:
            # generated concurrently, fall back to the row that won
            db.session.rollback()
            bill = find_bill(user, key)
        else:
            current_app.logger.info("bill %s generated for user %s %s: %.2f", bill.bill_id, user.user_id, key, total)
            return bill
    return refresh_bill(bill, total)


def generate_hall_bills(hall, month) -> List[Bill]:
    """Generate or refresh the month's bill of every student in ``hall``."""
    key = normalize_month(month)
    start, end = month_bounds(key)
    students = (
        User.query.join(Token, Token.user_id == User.user_id)
        .filter(
            User.hall_id == hall.hall_id,
            User.user_type == "student",
            Token.status == "approved",
            Token.token_date >= start,
            Token.token_date <= end,
        )
        .distinct()
        .order_by(User.name)
        .all()
    )
    bills = []
    for student in students:
        try:
            bills.append(generate_bill(student, key))
        except NothingToBill:
            continue

    billed = {bill.bill_id for bill in bills}
    stale = (
        Bill.query.join(User, Bill.user_id == User.user_id)
        .filter(User.hall_id == hall.hall_id, Bill.bill_month == key, Bill.status == "unpaid")
        .all()
    )
    for bill in stale:
        if bill.bill_id not in billed:
            bills.append(refresh_bill(bill))
    return bills


def bill_summary(bill: Bill, today: Optional[date] = None) -> dict:
    today = today or date.today()
    if bill.is_paid:
        return {"status": "paid", "days": 0}
    if not bill.due_date:
        return {"status": "unknown", "days": 0}
    diff = (bill.due_date - today).days
    if diff < 0:
        return {"status": "overdue", "days": -diff}
    if diff == 0:
        return {"status": "due_today", "days": 0}
    return {"status": "pending", "days": diff}


def new_transaction_id() -> str:
    return f"TXN{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


def pay_bill(user: User, bill: Bill, method: str, amount=None) -> Payment:
    if bill.user_id != user.user_id:
        raise BillAccessDenied()
    if bill.is_paid:
        raise BillAlreadyPaid()
    method = (method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise InvalidPaymentMethod()

    refresh_bill(bill)
    if amount is not None and amount != "":
        try:
            amount = _money(amount)
        except (TypeError, ValueError):
            raise PaymentAmountMismatch()
        if amount != _money(bill.total_amount):
            raise PaymentAmountMismatch()
    if bill.total_amount <= 0:
        raise NothingToBill("There is nothing to pay on this bill")

    # conditional update so two concurrent payments cannot both succeed
    updated = Bill.query.filter_by(bill_id=bill.bill_id, status="unpaid").update({"status": "paid"})
    if not updated:
        db.session.rollback()
        raise BillAlreadyPaid()

    payment = Payment(
        bill_id=bill.bill_id,
        amount=_money(bill.total_amount),
        payment_date=datetime.utcnow(),
        status="success",
        method=method,
        transaction_id=new_transaction_id(),
    )
    db.session.add(payment)
    db.session.commit()
    db.session.refresh(bill)
    current_app.logger.info(
        "bill %s paid by user %s: %.2f via %s (%s)",
        bill.bill_id, user.user_id, payment.amount, method, payment.transaction_id,
    )
    return payment


def latest_receipt(bill: Bill) -> Optional[Payment]:
    return (
        Payment.query.filter_by(bill_id=bill.bill_id, status="success")
        .order_by(Payment.payment_date.desc(), Payment.payment_id.desc())
        .first()
    )


def hall_bills(hall, month, status: Optional[str] = None) -> List[dict]:
    """Bills of a hall's students for ``month``, with the student's name and email."""
    key = normalize_month(month)
    query = (
        db.session.query(Bill, User)
        .join(User, Bill.user_id == User.user_id)
        .filter(User.hall_id == hall.hall_id, Bill.bill_month == key)
    )
    if status in BILL_STATUSES:
        query = query.filter(Bill.status == status)
    rows = []
    for bill, student in query.order_by(User.name, Bill.bill_id).all():
        rows.append({
            "bill_id": bill.bill_id,
            "user_id": student.user_id,
            "name": student.name,
            "email": student.email,
            "registration_no": student.registration_no,
            "total_amount": bill.total_amount,
            "status": bill.status,
            "due_date": bill.due_date,
        })
    return rows
