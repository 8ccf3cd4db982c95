"""
Custom exception classes for the application.

All custom exceptions inherit from base AppException for consistent error handling.
"""


class AppException(Exception):
    """
    Base application exception.

    All custom exceptions should inherit from this class.

    Attributes:
        message: Error message
        code: Error code
        status_code: HTTP status code
    """

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        status_code: int = 500
    ):
        """
        Initialize AppException.

        Args:
            message: Error message
            code: Error code
            status_code: HTTP status code
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


# Strategy Trade Exceptions

class TradeNotFoundError(AppException):
    """No active strategy trade for the instrument."""

    def __init__(self, scrip_code: str):
        super().__init__(
            message=f"No active strategy trade for {scrip_code}",
            code="TRADE_NOT_FOUND",
            status_code=404
        )


class TradePersistenceError(AppException):
    """Writing a trade record to the store failed."""

    def __init__(self, message: str = "Failed to persist trade"):
        super().__init__(message=message, code="TRADE_PERSISTENCE_ERROR", status_code=500)


class InstrumentBusyError(AppException):
    """Another writer holds the instrument lock."""

    def __init__(self, scrip_code: str):
        super().__init__(
            message=f"Instrument {scrip_code} is being updated, try again",
            code="INSTRUMENT_BUSY",
            status_code=409
        )
