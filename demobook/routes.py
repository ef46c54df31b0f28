from flask import Blueprint, render_template, redirect
from flask_login import current_user

from demobook.auth.routes import dashboard_url


main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(dashboard_url(current_user))
    return render_template("index.html")
