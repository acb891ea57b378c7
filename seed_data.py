from datetime import date

from accounts import create_manager, register_student
from app import create_app, ensure_db
from models import db, Hall, User
from menus import save_menu

HALLS = ["Shahid Smriti Hall", "Bijoy 24 Hall", "Begum Rokeya Hall"]

DEMO_MENU = {
    "breakfast": [("Paratha", 10), ("Egg Omelette", 25), ("Tea", 10)],
    "lunch": [("Rice", 20), ("Chicken Curry", 70), ("Dal", 15)],
    "dinner": [("Khichuri", 40), ("Beef Bhuna", 90), ("Salad", 10)],
}


def seed(app=None):
    app = app or create_app()
    ensure_db(app)
    with app.app_context():
        for n, hall_name in enumerate(HALLS, start=1):
            hall = Hall.query.filter_by(hall_name=hall_name).first()
            if hall is None:
                hall = Hall(hall_name=hall_name)
                db.session.add(hall)
                db.session.commit()
            email = f"manager{n}@mess.local"
            if User.query.filter_by(email=email).first() is None:
                create_manager(hall.hall_id, f"Manager {n}", email, "manager123", f"MGR-{n:03d}")

        first = Hall.query.filter_by(hall_name=HALLS[0]).first()
        if User.query.filter_by(email="student@mess.local").first() is None:
            register_student(
                "Demo Student", "student@mess.local", "student123", "student123",
                "2020-331-001", "HC-001", first.hall_id, phone="01700000000",
            )
        for meal_type, items in DEMO_MENU.items():
            rows = [{"item_name": name, "price": price, "available": True} for name, price in items]
            save_menu(first.hall_id, date.today(), meal_type, rows)
        print("Seeded halls:", ", ".join(HALLS))
        print("Manager login: manager1@mess.local / MGR-001 / manager123")
        print("Student login: student@mess.local / 2020-331-001 / student123")


if __name__ == "__main__":
    seed()
