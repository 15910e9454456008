from library_system.extensions import db
from library_system.models.notification_log import NotificationLog


class NotificationRepo:
    @staticmethod
    def list_for_transaction(transaction_id: int):
        return NotificationLog.query.filter_by(transaction_id=transaction_id).order_by(NotificationLog.id).all()

    @staticmethod
    def log(entry: NotificationLog):
        db.session.add(entry)
        db.session.commit()
        return entry
