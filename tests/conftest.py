"""Shared fixtures: a fresh app and database per test, plus seeded users."""
from datetime import datetime, timedelta

import pytest

from demobook import create_app, db
from demobook.models import BookingGroup, BookingSlot, User
from demobook.scheduling import gate


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "DEFAULT_TIMEZONE": "UTC",
        "SMTP_HOST": None,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _user(email, name, role, password=None):
    user = User(email=email, name=name, role=role)
    if password:
        user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin(app):
    return _user("admin@example.com", "Ada Admin", "admin", "admin-pass")


@pytest.fixture
def ta(app):
    return _user("ta@example.com", "Tom Assistant", "ta", "ta-pass")


@pytest.fixture
def other_ta(app):
    return _user("ta2@example.com", "Tina Assistant", "ta", "ta2-pass")


@pytest.fixture
def student(app):
    return _user("sam@example.com", "Sam Student", "student")


@pytest.fixture
def other_student(app):
    return _user("sue@example.com", "Sue Student", "student")


@pytest.fixture
def make_group(app):
    def factory(status=gate.PUBLISHED, slug="demo-1", **kwargs):
        group = BookingGroup(name=kwargs.pop("name", "Demo 1"), slug=slug, status=status, **kwargs)
        db.session.add(group)
        db.session.commit()
        return group

    return factory


@pytest.fixture
def group(make_group):
    return make_group()


@pytest.fixture
def make_slot(app):
    """Slot ``days`` ahead at ``hour``:``minute`` UTC."""
    def factory(group, ta=None, days=2, hour=10, minute=0, length=10, capacity=1):
        start = (datetime.utcnow() + timedelta(days=days)).replace(hour=hour, minute=minute, second=0, microsecond=0)
        slot = BookingSlot(
            booking_group_id=group.id,
            ta_id=ta.id if ta else None,
            start_time=start,
            end_time=start + timedelta(minutes=length),
            capacity=capacity,
        )
        db.session.add(slot)
        db.session.commit()
        return slot

    return factory


@pytest.fixture
def login_staff(client):
    def do_login(user, password):
        return client.post(
            f"/auth/login?role={user.role}",
            data={"email": user.email, "password": password},
        )

    return do_login


@pytest.fixture
def login_student(client):
    def do_login(user):
        return client.post("/auth/student-login", data={"name": user.name, "email": user.email})

    return do_login
