from courtside.core.logging_config import get_logger

logger = get_logger()


class LogNotifier:
    """Fire-and-forget booking notifications.

    Delivery (email, push) lives outside this service; this records what
    would be sent. A failing notifier never fails the booking operation.
    """

    def send(self, kind: str, booking, **extra):
        logger.bind(log_type="booking").info(
            f"Notify {kind} | booking={booking.id} | user={booking.user_id} | {extra or ''}"
        )

    def notify(self, kind: str, booking, **extra):
        try:
            self.send(kind, booking, **extra)
        except Exception as e:
            logger.error(f"Notification {kind} failed for booking {booking.id}: {e}")
