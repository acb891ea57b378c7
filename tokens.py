"""Meal tokens: a student's pick for one date and meal, identified by a
four digit code the counter can call out."""
import secrets
from datetime import date, datetime

from flask import current_app

from billing import find_bill, is_month_locked, month_bounds, refresh_bill
from errors import (
    AccountBlocked,
    BillingLocked,
    EmptySelection,
    HallAccessDenied,
    InvalidQuantity,
    InvalidStatusChange,
    InvalidTokenDate,
    MenuItemUnavailable,
    TokenCodeExhausted,
)
from menus import check_meal_type, parse_day
from models import db, MenuItem, Token, TokenItem, User, TOKEN_STATUSES

MAX_CODE_ATTEMPTS = 50

TRANSITIONS = {
    "pending": ("approved", "cancelled"),
    "approved": ("cancelled",),
    "cancelled": (),
}


def generate_code(hall_id, token_date, meal_type) -> str:
    taken = {
        code
        for (code,) in db.session.query(Token.token).filter(
            Token.hall_id == hall_id,
            Token.token_date == token_date,
            Token.meal_type == meal_type,
            Token.status != "cancelled",
        )
    }
    for _ in range(MAX_CODE_ATTEMPTS):
        code = str(1000 + secrets.randbelow(9000))
        if code not in taken:
            return code
    raise TokenCodeExhausted()


def _settle_code(token):
    """Re-issue ``token``'s code while an older live token of the same meal holds it.

    ``generate_code`` only sees committed rows, so two requests landing together
    can draw the same code; the later row gives way.
    """
    for _ in range(MAX_CODE_ATTEMPTS):
        clash = Token.query.filter(
            Token.hall_id == token.hall_id,
            Token.token_date == token.token_date,
            Token.meal_type == token.meal_type,
            Token.token == token.token,
            Token.status != "cancelled",
            Token.token_id < token.token_id,
        ).first()
        if clash is None:
            return token
        current_app.logger.warning(
            "token %s drew code %s already held by token %s, re-issuing", token.token_id, token.token, clash.token_id
        )
        token.token = generate_code(token.hall_id, token.token_date, token.meal_type)
        db.session.commit()
    raise TokenCodeExhausted()


def parse_selections(selections) -> dict:
    """Turn ``{menu_id: quantity}`` or ``(menu_id, quantity)`` pairs (form
    strings allowed) into ints, adding up repeated ids."""
    if hasattr(selections, "items"):
        selections = selections.items()
    wanted = {}
    for menu_id, quantity in selections or ():
        try:
            menu_id = int(menu_id)
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise InvalidQuantity()
        if quantity < 1:
            raise InvalidQuantity()
        wanted[menu_id] = wanted.get(menu_id, 0) + quantity
    if not wanted:
        raise EmptySelection()
    return wanted


def request_token(student, token_date, meal_type, selections, today=None) -> Token:
    if student.blocked:
        raise AccountBlocked()
    meal_type = check_meal_type(meal_type)
    token_date = parse_day(token_date)
    if token_date < (today or date.today()):
        raise InvalidTokenDate()
    wanted = parse_selections(selections)
    if is_month_locked(student.user_id, token_date):
        raise BillingLocked()

    menu = {item.menu_id: item for item in MenuItem.query.filter(MenuItem.menu_id.in_(list(wanted))).all()}
    for menu_id in wanted:
        item = menu.get(menu_id)
        if (
            item is None
            or item.hall_id != student.hall_id
            or item.menu_date != token_date
            or item.meal_type != meal_type
            or not item.available
        ):
            raise MenuItemUnavailable()

    token = Token(
        user_id=student.user_id,
        hall_id=student.hall_id,
        token_date=token_date,
        meal_type=meal_type,
        token=generate_code(student.hall_id, token_date, meal_type),
        status="pending",
        created_at=datetime.utcnow(),
    )
    for menu_id, quantity in wanted.items():
        item = menu[menu_id]
        token.items.append(
            TokenItem(menu_id=item.menu_id, item_name=item.item_name, price=item.price, quantity=quantity)
        )
    db.session.add(token)
    db.session.commit()
    _settle_code(token)
    current_app.logger.info(
        "token %s (%s) requested by user %s for %s %s: %.2f",
        token.token_id, token.token, student.user_id, token_date, meal_type, token.total,
    )
    return token


def set_status(manager, token, status) -> Token:
    if not manager.is_manager or manager.hall_id != token.hall_id:
        raise HallAccessDenied()
    status = (status or "").strip().lower()
    if status not in TOKEN_STATUSES:
        raise InvalidStatusChange()
    if status == token.status:
        return token
    if status not in TRANSITIONS[token.status]:
        raise InvalidStatusChange(f"A {token.status} token cannot be marked {status}")
    touches_bill = "approved" in (token.status, status)
    if touches_bill and is_month_locked(token.user_id, token.token_date):
        raise BillingLocked()

    previous, token.status = token.status, status
    db.session.commit()
    current_app.logger.info(
        "token %s %s -> %s by manager %s", token.token_id, previous, status, manager.user_id
    )
    if touches_bill:
        bill = find_bill(token.user, token.token_date)
        if bill is not None:
            refresh_bill(bill)
    return token


def cancel_own_token(student, token) -> Token:
    if token.user_id != student.user_id:
        raise HallAccessDenied("That token belongs to another student")
    if token.status != "pending":
        raise InvalidStatusChange("Only pending tokens can be cancelled")
    token.status = "cancelled"
    db.session.commit()
    current_app.logger.info("token %s cancelled by its owner %s", token.token_id, student.user_id)
    return token


def tokens_for_day(hall_id, token_date, meal_type, status=None):
    query = (
        Token.query.join(User, Token.user_id == User.user_id)
        .filter(
            Token.hall_id == hall_id,
            Token.token_date == parse_day(token_date),
            Token.meal_type == check_meal_type(meal_type),
        )
    )
    if status in TOKEN_STATUSES:
        query = query.filter(Token.status == status)
    return query.order_by(Token.token_id).all()


def find_by_code(hall_id, token_date, meal_type, code):
    return Token.query.filter(
        Token.hall_id == hall_id,
        Token.token_date == parse_day(token_date),
        Token.meal_type == check_meal_type(meal_type),
        Token.token == str(code).strip(),
        Token.status != "cancelled",
    ).first()


def student_tokens(student, month=None):
    query = Token.query.filter(Token.user_id == student.user_id)
    if month:
        start, end = month_bounds(month)
        query = query.filter(Token.token_date >= start, Token.token_date <= end)
    return query.order_by(Token.token_date.desc(), Token.token_id.desc()).all()
