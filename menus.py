from datetime import date, datetime

from flask import current_app

from errors import HallAccessDenied, InvalidDate, InvalidMealType, InvalidMenuItem
from models import db, MenuItem, TokenItem, MEAL_TYPES


def check_meal_type(meal_type) -> str:
    meal_type = (meal_type or "").strip().lower()
    if meal_type not in MEAL_TYPES:
        raise InvalidMealType()
    return meal_type


def parse_day(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError:
        raise InvalidDate()


def _price(value) -> float:
    try:
        price = round(float(value), 2)
    except (TypeError, ValueError):
        raise InvalidMenuItem("Price must be a number")
    if price < 0:
        raise InvalidMenuItem("Price cannot be negative")
    return price


def _available(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "on", "yes")
    return bool(value)


def _check_hall(manager, item):
    if item.hall_id != manager.hall_id:
        raise HallAccessDenied()


def get_menu(hall_id, menu_date, meal_type, only_available=False):
    query = MenuItem.query.filter_by(
        hall_id=hall_id, menu_date=parse_day(menu_date), meal_type=check_meal_type(meal_type)
    )
    if only_available:
        query = query.filter_by(available=True)
    return query.order_by(MenuItem.menu_id).all()


def save_menu(hall_id, menu_date, meal_type, rows):
    """Replace the menu of one hall, date and meal with ``rows``.

    Each row is a mapping with ``item_name``, ``price``, ``available`` and,
    for rows that edit an existing item, ``menu_id``.  Rows with a blank name
    are dropped.  Items that were left out but already appear on a token are
    kept and marked unavailable so the token's reference survives.
    """
    menu_date = parse_day(menu_date)
    meal_type = check_meal_type(meal_type)

    cleaned = []
    for row in rows:
        name = (row.get("item_name") or "").strip()
        if not name:
            continue
        menu_id = row.get("menu_id")
        if menu_id not in (None, ""):
            try:
                menu_id = int(menu_id)
            except (TypeError, ValueError):
                raise InvalidMenuItem("Unknown menu item")
        else:
            menu_id = None
        cleaned.append({
            "menu_id": menu_id,
            "item_name": name,
            "price": _price(row.get("price", 0)),
            "available": _available(row.get("available", True)),
        })

    existing = {item.menu_id: item for item in get_menu(hall_id, menu_date, meal_type)}
    kept = set()
    for row in cleaned:
        item = existing.get(row["menu_id"])
        if item is None:
            item = MenuItem(hall_id=hall_id, menu_date=menu_date, meal_type=meal_type)
            db.session.add(item)
        else:
            kept.add(item.menu_id)
        item.item_name = row["item_name"]
        item.price = row["price"]
        item.available = row["available"]

    dropped = [item for menu_id, item in existing.items() if menu_id not in kept]
    if dropped:
        referenced = {
            menu_id
            for (menu_id,) in db.session.query(TokenItem.menu_id)
            .filter(TokenItem.menu_id.in_([item.menu_id for item in dropped]))
            .distinct()
        }
        for item in dropped:
            if item.menu_id in referenced:
                item.available = False
            else:
                db.session.delete(item)

    db.session.commit()
    current_app.logger.info(
        "menu saved for hall %s %s %s: %d items", hall_id, menu_date, meal_type, len(cleaned)
    )
    return get_menu(hall_id, menu_date, meal_type)


def add_item(manager, menu_date, meal_type, item_name, price, available=True):
    name = (item_name or "").strip()
    if not name:
        raise InvalidMenuItem("Item name is required")
    item = MenuItem(
        hall_id=manager.hall_id,
        menu_date=parse_day(menu_date),
        meal_type=check_meal_type(meal_type),
        item_name=name,
        price=_price(price),
        available=_available(available),
    )
    db.session.add(item)
    db.session.commit()
    return item


def toggle_availability(manager, item):
    _check_hall(manager, item)
    item.available = not item.available
    db.session.commit()
    return item


def delete_item(manager, item):
    _check_hall(manager, item)
    # token lines keep their name/price snapshot
    TokenItem.query.filter_by(menu_id=item.menu_id).update({"menu_id": None})
    db.session.delete(item)
    db.session.commit()
    current_app.logger.info("menu item %s deleted by manager %s", item.menu_id, manager.user_id)


def previous_meals(hall_id, menu_date):
    items = MenuItem.query.filter_by(hall_id=hall_id, menu_date=parse_day(menu_date)).all()
    return sorted(items, key=lambda item: (MEAL_TYPES.index(item.meal_type), item.menu_id))
