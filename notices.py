from datetime import datetime

from flask import current_app

from billing import hall_bills, month_label, normalize_month
from errors import HallAccessDenied
from mailer import send_mail
from models import db, Bill, StudentWarning, User


def default_warning_message():
    days = current_app.config.get("WARNING_GRACE_DAYS", 10)
    return f"Pay within {days} days or account will be blocked"


def _warning_body(student, message, bill=None):
    lines = [f"Hello {student.name},", ""]
    if bill is not None:
        lines.append(f"Your mess bill for {month_label(bill.bill_month)} ({bill.total_amount:.2f} ৳) is still unpaid.")
        lines.append("")
    lines += [message, "", "Thank you."]
    return "\n".join(lines)


def issue_warning(manager, student, message=None, bill=None):
    if not manager.is_manager or not student.is_student or student.hall_id != manager.hall_id:
        raise HallAccessDenied()
    if bill is not None and bill.user_id != student.user_id:
        raise HallAccessDenied("That bill belongs to another student")
    message = (message or "").strip() or default_warning_message()

    warning = StudentWarning(
        student_id=student.user_id,
        manager_id=manager.user_id,
        bill_id=bill.bill_id if bill is not None else None,
        message=message,
        created_at=datetime.utcnow(),
    )
    db.session.add(warning)
    db.session.commit()
    current_app.logger.info(
        "warning %s sent to student %s by manager %s", warning.warning_id, student.user_id, manager.user_id
    )

    send_mail(student.email, "Bill Payment Warning", _warning_body(student, message, bill))
    return warning


def warn_unpaid(manager, month, message=None):
    """Warn every student of the manager's hall whose bill for ``month`` is unpaid."""
    key = normalize_month(month)
    warnings = []
    for row in hall_bills(manager.hall, key, status="unpaid"):
        student = db.session.get(User, row["user_id"])
        bill = db.session.get(Bill, row["bill_id"])
        warnings.append(issue_warning(manager, student, message, bill))
    return warnings


def student_warnings(student):
    return (
        StudentWarning.query.filter_by(student_id=student.user_id)
        .order_by(StudentWarning.created_at.desc(), StudentWarning.warning_id.desc())
        .all()
    )


def hall_warnings(manager):
    return (
        StudentWarning.query.join(User, StudentWarning.student_id == User.user_id)
        .filter(User.hall_id == manager.hall_id)
        .order_by(StudentWarning.created_at.desc(), StudentWarning.warning_id.desc())
        .all()
    )


def send_token_notice(student, token):
    lines = [
        f"Hello {student.name},",
        "",
        f"Your {token.meal_type} token for {token.token_date.isoformat()} is {token.token}.",
        "",
    ]
    for item in token.items:
        lines.append(f"  {item.item_name} x{item.quantity}  {item.price * item.quantity:.2f} ৳")
    lines += ["", f"Total: {token.total:.2f} ৳", "", "Show this code at the counter once it is approved."]
    return send_mail(student.email, f"Meal token {token.token}", "\n".join(lines))
