from datetime import datetime

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

MEAL_TYPES = ("breakfast", "lunch", "dinner")
TOKEN_STATUSES = ("pending", "approved", "cancelled")
BILL_STATUSES = ("paid", "unpaid")
PAYMENT_STATUSES = ("success", "failed", "pending")
OTP_PURPOSES = ("password_reset",)


class Hall(db.Model):
    __tablename__ = "halls"

    hall_id = db.Column(db.Integer, primary_key=True)
    hall_name = db.Column(db.String(120), unique=True, nullable=False)

    def to_dict(self):
        return {"hall_id": self.hall_id, "hall_name": self.hall_name}


class User(UserMixin, db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    hall_id = db.Column(db.Integer, db.ForeignKey("halls.hall_id"), nullable=False, index=True)
    user_type = db.Column(db.String(16), nullable=False, default="student")
    name = db.Column(db.String(120), nullable=False)
    registration_no = db.Column(db.String(50), unique=True, nullable=False)
    hall_card_no = db.Column(db.String(50))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(20))
    password_hash = db.Column(db.String(256), nullable=False)
    blocked = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    hall = db.relationship("Hall", backref="users")

    def get_id(self):
        return str(self.user_id)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_manager(self):
        return self.user_type == "manager"

    @property
    def is_student(self):
        return self.user_type == "student"

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "hall_id": self.hall_id,
            "user_type": self.user_type,
            "name": self.name,
            "registration_no": self.registration_no,
            "hall_card_no": self.hall_card_no,
            "email": self.email,
            "phone": self.phone,
            "blocked": self.blocked,
            "created_at": self.created_at.isoformat(),
        }


class MenuItem(db.Model):
    __tablename__ = "menu"

    menu_id = db.Column(db.Integer, primary_key=True)
    hall_id = db.Column(db.Integer, db.ForeignKey("halls.hall_id"), nullable=False)
    meal_type = db.Column(db.String(16), nullable=False)
    menu_date = db.Column(db.Date, nullable=False)
    item_name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Float, nullable=False, default=0.0)
    available = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.Index("ix_menu_hall_date_meal", "hall_id", "menu_date", "meal_type"),
        db.CheckConstraint("price >= 0", name="ck_menu_price"),
    )

    def to_dict(self):
        return {
            "menu_id": self.menu_id,
            "hall_id": self.hall_id,
            "meal_type": self.meal_type,
            "menu_date": self.menu_date.isoformat(),
            "item_name": self.item_name,
            "price": self.price,
            "available": self.available,
        }


class Token(db.Model):
    __tablename__ = "tokens"

    token_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    hall_id = db.Column(db.Integer, db.ForeignKey("halls.hall_id"), nullable=False)
    token_date = db.Column(db.Date, nullable=False)
    meal_type = db.Column(db.String(16), nullable=False)
    token = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", backref="tokens")
    items = db.relationship(
        "TokenItem", backref="token_row", cascade="all, delete-orphan", order_by="TokenItem.token_item_id"
    )

    __table_args__ = (db.Index("ix_tokens_hall_date_meal", "hall_id", "token_date", "meal_type"),)

    @property
    def total(self):
        return round(sum(item.line_total for item in self.items), 2)

    def to_dict(self):
        return {
            "token_id": self.token_id,
            "user_id": self.user_id,
            "hall_id": self.hall_id,
            "token_date": self.token_date.isoformat(),
            "meal_type": self.meal_type,
            "token": self.token,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "total": self.total,
            "token_items": [item.to_dict() for item in self.items],
        }


class TokenItem(db.Model):
    __tablename__ = "token_items"

    token_item_id = db.Column(db.Integer, primary_key=True)
    token_id = db.Column(db.Integer, db.ForeignKey("tokens.token_id", ondelete="CASCADE"), nullable=False)
    menu_id = db.Column(db.Integer, db.ForeignKey("menu.menu_id", ondelete="SET NULL"), nullable=True)
    item_name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Float, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (db.CheckConstraint("quantity >= 1", name="ck_token_items_quantity"),)

    @property
    def line_total(self):
        return self.price * self.quantity

    def to_dict(self):
        return {
            "token_item_id": self.token_item_id,
            "menu_id": self.menu_id,
            "item_name": self.item_name,
            "price": self.price,
            "quantity": self.quantity,
        }


class Bill(db.Model):
    __tablename__ = "bills"

    bill_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    bill_month = db.Column(db.String(7), nullable=False)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(16), nullable=False, default="unpaid")
    generated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    due_date = db.Column(db.Date)

    user = db.relationship("User", backref="bills")
    payments = db.relationship("Payment", backref="bill", lazy=True, cascade="all, delete-orphan")

    __table_args__ = (db.UniqueConstraint("user_id", "bill_month", name="uq_bills_user_month"),)

    @property
    def is_paid(self):
        return self.status == "paid"

    def to_dict(self):
        return {
            "bill_id": self.bill_id,
            "user_id": self.user_id,
            "bill_month": self.bill_month,
            "total_amount": self.total_amount,
            "status": self.status,
            "generated_at": self.generated_at.isoformat(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }


class Payment(db.Model):
    __tablename__ = "payments"

    payment_id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.bill_id"), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    payment_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    method = db.Column(db.String(20))
    transaction_id = db.Column(db.String(40), unique=True, index=True)

    def to_dict(self):
        return {
            "payment_id": self.payment_id,
            "bill_id": self.bill_id,
            "amount": self.amount,
            "payment_date": self.payment_date.isoformat(),
            "status": self.status,
            "method": self.method,
            "transaction_id": self.transaction_id,
        }


class StudentWarning(db.Model):
    __tablename__ = "warnings"

    warning_id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.bill_id"), nullable=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    student = db.relationship("User", foreign_keys=[student_id])
    manager = db.relationship("User", foreign_keys=[manager_id])
    bill = db.relationship("Bill")

    def to_dict(self):
        return {
            "warning_id": self.warning_id,
            "student_id": self.student_id,
            "manager_id": self.manager_id,
            "bill_id": self.bill_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class UserOtp(db.Model):
    __tablename__ = "user_otps"

    otp_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    purpose = db.Column(db.String(20), nullable=False)
    otp_hash = db.Column(db.String(128), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User")
