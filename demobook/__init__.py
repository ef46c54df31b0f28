from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
import csv
import logging
import os
import click
from dotenv import load_dotenv

db = SQLAlchemy()
login_manager = LoginManager()
login_manager.login_view = "auth.login"


def create_app(test_config=None):
    # Load .env if present to simplify local setup
    load_dotenv()
    app = Flask(__name__)

    # Basic config (override via env in production)
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(app.root_path, 'demobook.db')}"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["COURSE_NAME"] = os.getenv("COURSE_NAME", "CS 2200")
    app.config["DEFAULT_TIMEZONE"] = os.getenv("DEFAULT_TIMEZONE", "UTC")
    app.config["MAGIC_LINK_MAX_AGE"] = int(os.getenv("MAGIC_LINK_MAX_AGE", "3600"))
    app.config["SMTP_HOST"] = os.getenv("SMTP_HOST")
    app.config["SMTP_PORT"] = int(os.getenv("SMTP_PORT", "587"))
    app.config["SMTP_USER"] = os.getenv("SMTP_USER")
    app.config["SMTP_PASS"] = os.getenv("SMTP_PASS")
    app.config["MAIL_FROM"] = os.getenv("MAIL_FROM", app.config["SMTP_USER"])
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Init extensions
    db.init_app(app)
    login_manager.init_app(app)

    # Models import for SQLAlchemy configuration
    from .models import User  # noqa: F401

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    from .helpers import register_template_helpers
    register_template_helpers(app)

    # Blueprints
    from .routes import main_bp
    from .auth.routes import auth_bp
    from .admin.routes import admin_bp
    from .ta.routes import ta_bp
    from .student.routes import student_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(ta_bp)
    app.register_blueprint(student_bp)

    # Create tables if not exist
    with app.app_context():
        db.create_all()

    # CLI helpers; student and TA rosters are managed here rather than in the UI
    @app.cli.command("create-user")
    @click.option("--email", prompt=True)
    @click.option("--name", prompt=True)
    @click.option("--role", type=click.Choice(["admin", "ta"]), default="ta")
    @click.option("--password", default="", help="Optional; admins and TAs can also sign in by magic link")
    def create_user(email, name, role, password):
        """Create an admin or TA account."""
        from .models import User

        if User.query.filter_by(email=email.lower().strip()).first():
            click.echo("User already exists")
            return
        user = User(email=email.lower().strip(), name=name.strip(), role=role)
        if password:
            user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {role} user: {email}")

    @app.cli.command("add-student")
    @click.option("--email", prompt=True)
    @click.option("--name", prompt=True)
    def add_student(email, name):
        """Register a student (they sign in with this exact name and email)."""
        from .models import User

        if User.query.filter_by(email=email.lower().strip()).first():
            click.echo("User already exists")
            return
        db.session.add(User(email=email.lower().strip(), name=name.strip(), role="student"))
        db.session.commit()
        click.echo(f"Added student: {email}")

    @app.cli.command("import-students")
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    def import_students(csv_path):
        """Import students from a CSV file with ``name`` and ``email`` columns."""
        from .models import User

        added = skipped = 0
        with open(csv_path, newline="", encoding="utf-8") as fh:
            for row in csv.DictReader(fh):
                email = (row.get("email") or "").strip().lower()
                name = (row.get("name") or "").strip()
                if not email or not name or User.query.filter_by(email=email).first():
                    skipped += 1
                    continue
                db.session.add(User(email=email, name=name, role="student"))
                added += 1
        db.session.commit()
        click.echo(f"Imported students: added={added}, skipped={skipped}")

    return app
