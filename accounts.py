from functools import wraps

from flask import abort, current_app
from flask_login import current_user
from sqlalchemy import func, or_

from errors import AuthenticationError, HallAccessDenied, RegistrationError
from models import db, Hall, User

MIN_PASSWORD_LENGTH = 6


def student_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        if not current_user.is_student:
            abort(403)
        return f(*args, **kwargs)
    return decorated_function


def manager_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        if not current_user.is_manager:
            abort(403)
        return f(*args, **kwargs)
    return decorated_function


def find_by_email(email):
    email = (email or "").strip().lower()
    if not email:
        return None
    return User.query.filter(func.lower(User.email) == email).first()


def _create_user(user_type, name, email, password, registration_no, hall_id, hall_card_no=None, phone=None):
    user = User(
        user_type=user_type,
        name=name.strip(),
        email=email.strip().lower(),
        registration_no=registration_no.strip(),
        hall_card_no=(hall_card_no or "").strip() or None,
        phone=(phone or "").strip() or None,
        hall_id=hall_id,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("%s %s registered in hall %s", user_type, user.user_id, hall_id)
    return user


def register_student(name, email, password, confirm_password, registration_no, hall_card_no, hall_id, phone=None):
    fields = (name, email, password, confirm_password, registration_no, hall_card_no, hall_id)
    if any(not str(value or "").strip() for value in fields):
        raise RegistrationError("Please fill all required fields")
    if password != confirm_password:
        raise RegistrationError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise RegistrationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    try:
        hall = db.session.get(Hall, int(hall_id))
    except (TypeError, ValueError):
        hall = None
    if hall is None:
        raise RegistrationError("Please select a valid hall")

    email = email.strip().lower()
    registration_no = registration_no.strip()
    existing = User.query.filter(
        or_(func.lower(User.email) == email, User.registration_no == registration_no)
    ).first()
    if existing is not None:
        if existing.email.lower() == email:
            raise RegistrationError("Email already registered")
        raise RegistrationError("Registration number already exists")

    return _create_user("student", name, email, password, registration_no, hall.hall_id, hall_card_no, phone)


def create_manager(hall_id, name, email, password, registration_no):
    if find_by_email(email) is not None:
        raise RegistrationError("Email already registered")
    return _create_user("manager", name, email, password, registration_no, hall_id)


def authenticate(email, registration_no, password):
    if not email or not registration_no or not password:
        raise AuthenticationError("Please fill all login fields")
    user = find_by_email(email)
    if user is None or user.registration_no != registration_no.strip() or not user.check_password(password):
        raise AuthenticationError()
    return user


def change_password(user, new_password):
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise RegistrationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user.set_password(new_password)
    db.session.commit()
    current_app.logger.info("password changed for user %s", user.user_id)


def students_in_hall(hall_id):
    return User.query.filter_by(hall_id=hall_id, user_type="student").order_by(User.name).all()


def set_blocked(manager, student, blocked):
    if not student.is_student or student.hall_id != manager.hall_id:
        raise HallAccessDenied()
    student.blocked = bool(blocked)
    db.session.commit()
    current_app.logger.info(
        "student %s %s by manager %s", student.user_id, "blocked" if blocked else "unblocked", manager.user_id
    )
    return student
