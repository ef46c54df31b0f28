from datetime import datetime, time

from slugify import slugify

from demobook import db
from demobook.scheduling import gate


class BookingGroup(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=gate.HIDDEN)  # hidden, published, locked, inactive
    ta_required_minutes = db.Column(db.Integer, nullable=False, default=120)
    date_range_start = db.Column(db.Date, nullable=True)
    date_range_end = db.Column(db.Date, nullable=True)
    daily_start_time = db.Column(db.Time, nullable=False, default=time(9, 0))
    daily_end_time = db.Column(db.Time, nullable=False, default=time(17, 0))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    slots = db.relationship(
        'BookingSlot',
        backref='group',
        cascade='all, delete-orphan',
        order_by='BookingSlot.start_time',
    )

    @staticmethod
    def generate_slug(name: str) -> str:
        base = slugify(name) or 'demo'
        return base

    def allows(self, action: str) -> bool:
        return gate.is_allowed(self.status, action)

    def __repr__(self):
        return f"<BookingGroup {self.slug} ({self.status})>"
