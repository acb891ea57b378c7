from flask import Blueprint, render_template, request, redirect, url_for, flash
from flask_login import login_user, logout_user, login_required

from accounts import authenticate, register_student
from errors import MessError
from models import Hall
from otp import request_password_reset, reset_password

auth_bp = Blueprint("auth", __name__)

RESET_SENT_MESSAGE = "If the account exists, an OTP has been sent to the registered email."


def _halls():
    return Hall.query.order_by(Hall.hall_name).all()


@auth_bp.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "GET":
        return render_template("register.html", halls=_halls(), form={})

    form = request.form
    try:
        register_student(
            name=form.get("name", ""),
            email=form.get("email", ""),
            password=form.get("password", ""),
            confirm_password=form.get("confirm_password", ""),
            registration_no=form.get("registration_no", ""),
            hall_card_no=form.get("hall_card_no", ""),
            hall_id=form.get("hall_id"),
            phone=form.get("phone"),
        )
    except MessError as exc:
        return render_template("register.html", halls=_halls(), form=form, error=exc.detail), 400
    flash("Account created successfully! You can now login.", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return render_template("login.html")

    try:
        user = authenticate(
            request.form.get("email", ""),
            request.form.get("registration_no", ""),
            request.form.get("password", ""),
        )
    except MessError as exc:
        return render_template("login.html", error=exc.detail), 401
    login_user(user)
    next_url = request.args.get("next")
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return redirect(next_url)
    return redirect(url_for("manager.dashboard" if user.is_manager else "student.dashboard"))


@auth_bp.route("/logout")
@login_required
def logout():
    logout_user()
    flash("Logged out", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/password/forgot", methods=["GET", "POST"])
def forgot_password():
    if request.method == "GET":
        return render_template("forgot_password.html")
    request_password_reset(request.form.get("email", ""))
    flash(RESET_SENT_MESSAGE, "success")
    return redirect(url_for("auth.password_reset", email=request.form.get("email", "")))


@auth_bp.route("/password/reset", methods=["GET", "POST"])
def password_reset():
    if request.method == "GET":
        return render_template("reset_password.html", email=request.args.get("email", ""))

    email = request.form.get("email", "")
    try:
        reset_password(email, request.form.get("otp", ""), request.form.get("new_password", ""))
    except MessError as exc:
        return render_template("reset_password.html", email=email, error=exc.detail), 400
    flash("Password updated, please login.", "success")
    return redirect(url_for("auth.login"))
