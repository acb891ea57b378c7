from datetime import date

from flask import Blueprint, render_template, request, redirect, url_for, flash, abort
from flask_login import current_user

from accounts import manager_required, set_blocked, students_in_hall
from billing import generate_hall_bills, hall_bills, month_label, normalize_month
from menus import delete_item, get_menu, previous_meals, save_menu, toggle_availability
from models import db, Bill, MenuItem, Token, User, TOKEN_STATUSES
from notices import hall_warnings, issue_warning, warn_unpaid
from tokens import find_by_code, set_status, tokens_for_day

manager_bp = Blueprint("manager", __name__)


def menu_rows_from_form(form):
    """The set-menu form posts parallel ``item_name``/``price``/``menu_id`` lists
    and one ``available_<index>`` checkbox per row."""
    names = form.getlist("item_name")
    prices = form.getlist("price")
    ids = form.getlist("menu_id")
    rows = []
    for i, name in enumerate(names):
        rows.append({
            "item_name": name,
            "price": prices[i] if i < len(prices) else 0,
            "menu_id": ids[i] if i < len(ids) else None,
            "available": f"available_{i}" in form,
        })
    return rows


def _form_id(name):
    try:
        return int(request.form.get(name, ""))
    except ValueError:
        abort(400)


def _hall_row(model, pk):
    row = db.get_or_404(model, pk)
    if row.hall_id != current_user.hall_id:
        abort(404)
    return row


@manager_bp.route("/dashboard")
@manager_required
def dashboard():
    today = date.today()
    pending = Token.query.filter_by(hall_id=current_user.hall_id, token_date=today, status="pending").count()
    month = normalize_month(today)
    unpaid = hall_bills(current_user.hall, month, status="unpaid")
    return render_template(
        "manager/dashboard.html",
        hall=current_user.hall,
        pending=pending,
        students=len(students_in_hall(current_user.hall_id)),
        unpaid=unpaid,
        month_name=month_label(month),
    )


@manager_bp.route("/menu", methods=["GET", "POST"])
@manager_required
def menu():
    meal_type = request.values.get("meal_type", "")
    day = request.values.get("date", "")
    if request.method == "POST":
        items = save_menu(current_user.hall_id, day, meal_type, menu_rows_from_form(request.form))
        flash(f"Menu saved successfully ({len(items)} items)", "success")
        return redirect(url_for("manager.menu", meal_type=meal_type, date=day))

    items = get_menu(current_user.hall_id, day, meal_type) if meal_type and day else []
    return render_template("manager/menu.html", items=items, meal_type=meal_type, day=day)


@manager_bp.route("/menu/<int:menu_id>/toggle", methods=["POST"])
@manager_required
def toggle(menu_id):
    item = _hall_row(MenuItem, menu_id)
    toggle_availability(current_user, item)
    return redirect(url_for("manager.menu", meal_type=item.meal_type, date=item.menu_date.isoformat()))


@manager_bp.route("/menu/<int:menu_id>/delete", methods=["POST"])
@manager_required
def delete(menu_id):
    item = _hall_row(MenuItem, menu_id)
    meal_type, day = item.meal_type, item.menu_date.isoformat()
    delete_item(current_user, item)
    flash(f"{item.item_name} removed", "success")
    return redirect(url_for("manager.menu", meal_type=meal_type, date=day))


@manager_bp.route("/previous-meals")
@manager_required
def previous():
    day = request.args.get("date", "")
    meals = previous_meals(current_user.hall_id, day) if day else []
    return render_template("manager/previous_meals.html", meals=meals, day=day)


@manager_bp.route("/tokens", methods=["GET", "POST"])
@manager_required
def tokens():
    meal_type = request.values.get("meal_type", "")
    day = request.values.get("date", "")
    status = request.values.get("status", "")
    if request.method == "POST":
        token = _hall_row(Token, _form_id("token_id"))
        set_status(current_user, token, request.form.get("new_status"))
        flash(f"Token {token.token} marked {token.status}", "success")
        return redirect(url_for("manager.tokens", meal_type=meal_type, date=day, status=status))

    rows, found = [], None
    if meal_type and day:
        rows = tokens_for_day(current_user.hall_id, day, meal_type, status or None)
        code = request.args.get("code", "").strip()
        if code:
            found = find_by_code(current_user.hall_id, day, meal_type, code)
            if found is None:
                flash(f"No active token {code} for this meal", "error")
    return render_template(
        "manager/tokens.html", tokens=rows, found=found, meal_type=meal_type, day=day,
        status=status, statuses=TOKEN_STATUSES,
    )


@manager_bp.route("/students")
@manager_required
def students():
    return render_template("manager/students.html", students=students_in_hall(current_user.hall_id))


@manager_bp.route("/students/<int:user_id>/block", methods=["POST"])
@manager_required
def block(user_id):
    student = _hall_row(User, user_id)
    set_blocked(current_user, student, request.form.get("blocked") == "1")
    flash(f"{student.name} {'blocked' if student.blocked else 'unblocked'}", "success")
    return redirect(url_for("manager.students"))


@manager_bp.route("/bills", methods=["GET", "POST"])
@manager_required
def bills():
    raw = request.values.get("month")
    status = request.values.get("status", "")
    if request.method == "POST":
        month = normalize_month(raw)
        action = request.form.get("action")
        if action == "generate":
            generated = generate_hall_bills(current_user.hall, month)
            flash(f"{len(generated)} bills generated for {month_label(month)}", "success")
        elif action == "warn_all":
            sent = warn_unpaid(current_user, month, request.form.get("message"))
            flash(f"{len(sent)} warnings sent", "success")
        elif action == "warn":
            bill = db.get_or_404(Bill, _form_id("bill_id"))
            if bill.user.hall_id != current_user.hall_id:
                abort(404)
            issue_warning(current_user, bill.user, request.form.get("message"), bill)
            flash(f"Warning email sent to {bill.user.name}", "success")
        return redirect(url_for("manager.bills", month=month, status=status))

    rows, month = [], None
    if raw:
        month = normalize_month(raw)
        rows = hall_bills(current_user.hall, month, status or None)
    return render_template(
        "manager/bills.html", rows=rows, month=month or "", status=status,
        month_name=month_label(month) if month else "",
    )


@manager_bp.route("/warnings", methods=["GET", "POST"])
@manager_required
def warnings():
    if request.method == "POST":
        student = _hall_row(User, _form_id("student_id"))
        issue_warning(current_user, student, request.form.get("message"))
        flash("Warning sent successfully!", "success")
        return redirect(url_for("manager.warnings"))
    return render_template(
        "manager/warnings.html", warnings=hall_warnings(current_user),
        students=students_in_hall(current_user.hall_id),
    )
