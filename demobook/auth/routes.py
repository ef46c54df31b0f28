import logging
from datetime import datetime

from flask import Blueprint, render_template, request, redirect, url_for, flash
from flask_login import login_user, logout_user, login_required, current_user
from demobook import db
from demobook.models.user import User
from demobook.auth import tokens
from demobook.mail import send_magic_link, send_password_reset
from functools import wraps


log = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

STAFF_ROLES = ("admin", "ta")
ROLE_LABELS = {"admin": "Admin", "ta": "TA", "student": "Student"}


def dashboard_url(user) -> str:
    if user.is_admin:
        return url_for("admin.dashboard")
    if user.is_ta:
        return url_for("ta.dashboard")
    return url_for("student.dashboard")


def _login_url_for(roles, next_url=None):
    if roles == ("student",):
        return url_for("auth.student_login", next=next_url)
    return url_for("auth.login", role=roles[0] if roles else "ta", next=next_url)


def roles_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return redirect(_login_url_for(roles, request.url))
            if current_user.role not in roles:
                flash("You do not have access to that page.", "error")
                return redirect(url_for("main.index"))
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _sign_in(user) -> None:
    user.last_login_at = datetime.utcnow()
    db.session.commit()
    login_user(user, remember=True)


def _role_arg() -> str:
    role = request.values.get("role", "ta")
    return role if role in STAFF_ROLES else "ta"


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(dashboard_url(current_user))

    role = _role_arg()
    label = ROLE_LABELS[role]
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        user = User.query.filter_by(email=email, role=role).first()
        if not user:
            flash(f"No {label} account found with this email", "error")
        elif password:
            if not user.check_password(password):
                flash("Invalid email or password", "error")
            else:
                _sign_in(user)
                return redirect(dashboard_url(user))
        else:
            token = tokens.make_token(user, tokens.MAGIC_LINK)
            link = url_for("auth.callback", token=token, _external=True)
            send_magic_link(user, link)
            log.info("Magic link issued for %s (%s)", user.email, role)
            return render_template("auth/link_sent.html", email=email, role=role)

    return render_template("auth/login.html", role=role, label=label)


@auth_bp.route("/callback")
def callback():
    user = tokens.user_for_token(request.args.get("token", ""), tokens.MAGIC_LINK)
    if not user or user.is_student:
        flash("Failed to authenticate. The link may have expired.", "error")
        return redirect(url_for("main.index"))

    _sign_in(user)
    flash(f"Welcome back, {user.name}!", "success")
    if not user.has_password:
        return redirect(url_for("auth.set_password"))
    return redirect(dashboard_url(user))


@auth_bp.route("/set-password", methods=["GET", "POST"])
@roles_required(*STAFF_ROLES)
def set_password():
    if request.method == "POST":
        password = request.form.get("password", "")
        password2 = request.form.get("password2", "")
        if password != password2:
            flash("Passwords do not match", "error")
        elif len(password) < 6:
            flash("Password must be at least 6 characters", "error")
        else:
            current_user.set_password(password)
            db.session.commit()
            flash("Password updated successfully!", "success")
            return redirect(dashboard_url(current_user))

    return render_template("auth/set_password.html")


@auth_bp.route("/forgot-password", methods=["GET", "POST"])
def forgot_password():
    role = _role_arg()
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        user = User.query.filter_by(email=email, role=role).first()
        if user:
            token = tokens.make_token(user, tokens.PASSWORD_RESET)
            send_password_reset(user, url_for("auth.reset_password", token=token, _external=True))
        flash("If that account exists, a reset link is on its way.", "success")
        return redirect(url_for("auth.login", role=role))

    return render_template("auth/forgot_password.html", role=role, label=ROLE_LABELS[role])


@auth_bp.route("/reset-password", methods=["GET", "POST"])
def reset_password():
    token = request.values.get("token", "")
    user = tokens.user_for_token(token, tokens.PASSWORD_RESET)
    if not user:
        flash("This reset link is invalid or has expired.", "error")
        return redirect(url_for("main.index"))

    if request.method == "POST":
        password = request.form.get("password", "")
        password2 = request.form.get("password2", "")
        if password != password2:
            flash("Passwords do not match", "error")
        elif len(password) < 6:
            flash("Password must be at least 6 characters", "error")
        else:
            user.set_password(password)
            db.session.commit()
            flash("Password updated. You can now sign in.", "success")
            return redirect(url_for("auth.login", role=user.role))

    return render_template("auth/reset_password.html", token=token, label=ROLE_LABELS[user.role])


@auth_bp.route("/student-login", methods=["GET", "POST"])
def student_login():
    if current_user.is_authenticated:
        return redirect(dashboard_url(current_user))

    if request.method == "POST":
        name = request.form.get("name", "").strip()
        email = request.form.get("email", "").strip().lower()
        student = User.query.filter_by(email=email, name=name, role="student").first()
        if not student:
            flash("No student found with that name and email combination.", "error")
        else:
            _sign_in(student)
            flash(f"Logged in as {student.name}", "success")
            return redirect(url_for("student.dashboard"))

    return render_template("auth/student_login.html")


@auth_bp.route("/logout")
@login_required
def logout():
    logout_user()
    flash("You have been signed out.", "success")
    return redirect(url_for("main.index"))
