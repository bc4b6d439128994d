from src.booking.store import BookingNotFoundError, BookingStore, BookingValidationError

__all__ = ["BookingStore", "BookingValidationError", "BookingNotFoundError"]
