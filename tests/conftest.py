from datetime import date, datetime

import pytest

from accounts import create_manager, register_student
from app import create_app
from models import db, Hall, MenuItem, Token, TokenItem

PASSWORD = "secret1"


@pytest.fixture
def app():
    app = create_app(testing=True)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def hall(app):
    hall = Hall(hall_name="Shahid Smriti Hall")
    db.session.add(hall)
    db.session.commit()
    return hall


@pytest.fixture
def other_hall(app):
    hall = Hall(hall_name="Bijoy 24 Hall")
    db.session.add(hall)
    db.session.commit()
    return hall


@pytest.fixture
def manager(hall):
    return create_manager(hall.hall_id, "Rahim Manager", "manager@mess.local", PASSWORD, "MGR-001")


@pytest.fixture
def student(hall):
    return register_student(
        "Karim Student", "karim@mess.local", PASSWORD, PASSWORD, "2020-001", "HC-001", hall.hall_id, "01700000000"
    )


@pytest.fixture
def other_student(hall):
    return register_student(
        "Abdul Student", "abdul@mess.local", PASSWORD, PASSWORD, "2020-002", "HC-002", hall.hall_id
    )


@pytest.fixture
def outsider(other_hall):
    return register_student(
        "Outside Student", "outside@mess.local", PASSWORD, PASSWORD, "2020-900", "HC-900", other_hall.hall_id
    )


def add_menu_item(hall, day, meal_type, name, price, available=True):
    item = MenuItem(hall_id=hall.hall_id, menu_date=day, meal_type=meal_type, item_name=name, price=price,
                    available=available)
    db.session.add(item)
    db.session.commit()
    return item


def make_token(user, day, meal_type="lunch", items=(("Rice", 20, 1),), status="approved", code="1000"):
    token = Token(user_id=user.user_id, hall_id=user.hall_id, token_date=day, meal_type=meal_type, token=code,
                  status=status, created_at=datetime(day.year, day.month, day.day, 8, 0))
    for name, price, quantity in items:
        token.items.append(TokenItem(item_name=name, price=price, quantity=quantity))
    db.session.add(token)
    db.session.commit()
    return token


def login(client, user, password=PASSWORD):
    return client.post(
        "/login",
        data={"email": user.email, "registration_no": user.registration_no, "password": password},
    )


@pytest.fixture
def march_tokens(student):
    """Approved, pending and cancelled tokens around March 2025."""
    return [
        make_token(student, date(2025, 3, 2), "lunch", [("Rice", 20, 2), ("Chicken Curry", 70, 1)], code="1001"),
        make_token(student, date(2025, 3, 1), "lunch", [("Khichuri", 50, 1)], code="1002"),
        make_token(student, date(2025, 3, 1), "dinner", [("Dal", 15, 2)], code="1003"),
        make_token(student, date(2025, 3, 1), "breakfast", [("Paratha", 100, 1)], status="pending", code="1004"),
        make_token(student, date(2025, 3, 5), "lunch", [("Fish", 80, 1)], status="cancelled", code="1005"),
        make_token(student, date(2025, 4, 1), "lunch", [("Rice", 20, 1)], code="1006"),
    ]
