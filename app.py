import logging
import os

from flask import Flask, render_template, request, redirect, url_for, jsonify, flash
from flask_login import LoginManager, current_user

from config import Config, TestingConfig
from errors import MessError
from models import db, User, MEAL_TYPES

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "error"


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    if request.path.startswith("/api/"):
        return jsonify({"error": "login required"}), 401
    flash("Please login to access this page", "error")
    return redirect(url_for("auth.login", next=request.path))


def create_app(testing: bool = False, config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or (TestingConfig if testing else Config))
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    db.init_app(app)
    login_manager.init_app(app)

    from auth_routes import auth_bp
    from student_routes import student_bp
    from manager_routes import manager_bp
    from api_routes import api_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(student_bp, url_prefix="/student")
    app.register_blueprint(manager_bp, url_prefix="/manager")
    app.register_blueprint(api_bp, url_prefix="/api")

    @app.context_processor
    def inject_meal_types():
        return {"meal_types": MEAL_TYPES}

    @app.route("/")
    def index():
        if current_user.is_authenticated:
            endpoint = "manager.dashboard" if current_user.is_manager else "student.dashboard"
            return redirect(url_for(endpoint))
        return render_template("index.html")

    @app.errorhandler(MessError)
    def handle_mess_error(exc):
        if request.path.startswith("/api/"):
            return jsonify({"error": exc.detail}), 400
        flash(exc.detail, "error")
        return redirect(request.referrer or url_for("index"))

    if testing:
        ensure_db(app)
    return app


def ensure_db(app):
    with app.app_context():
        db.create_all()


if __name__ == "__main__":
    app = create_app()
    ensure_db(app)
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=True)
