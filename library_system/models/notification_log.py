# library_system/models/notification_log.py
from library_system.extensions import db
from library_system.utils.clock import utcnow


class NotificationLog(db.Model):
    __tablename__ = "notification_logs"

    id = db.Column(db.Integer, primary_key=True)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # book_issued, due_reminder, overdue_notice, phone_otp ...
    kind = db.Column(db.String(50), nullable=False)
    channel = db.Column(db.String(10), nullable=False)  # email / sms

    recipient = db.Column(db.String(255), nullable=True)
    message = db.Column(db.String(1000), nullable=True)

    sent_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.String(500), nullable=True)

    transaction = db.relationship("Transaction", backref="notifications")
