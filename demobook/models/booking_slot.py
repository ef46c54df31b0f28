from datetime import datetime

from demobook import db


class BookingSlot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    booking_group_id = db.Column(db.Integer, db.ForeignKey('booking_group.id'), nullable=False, index=True)
    ta_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    # Naive UTC instants
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)
    capacity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    ta = db.relationship('User')
    bookings = db.relationship('Booking', backref='slot', cascade='all, delete-orphan')

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def __repr__(self):
        return f"<BookingSlot {self.id} {self.start_time:%Y-%m-%d %H:%M}>"
