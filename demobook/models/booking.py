from datetime import datetime

from demobook import db


class Booking(db.Model):
    __table_args__ = (
        # One booking per student per group; the booking procedure relies on it
        db.UniqueConstraint('student_id', 'booking_group_id', name='uq_booking_student_group'),
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_slot_id = db.Column(db.Integer, db.ForeignKey('booking_slot.id'), nullable=False, index=True)
    booking_group_id = db.Column(db.Integer, db.ForeignKey('booking_group.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    booked_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    student = db.relationship('User')
    group = db.relationship('BookingGroup')
