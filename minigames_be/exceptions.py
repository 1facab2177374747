from minigames_be.error_codes import ErrorCodes

class AppException(Exception):
    def __init__(self, error_code, status_message, status_code, details=None, action_button=None):
        super().__init__(status_message)
        self.error_code = error_code
        self.status_message = status_message
        self.status_code = status_code
        self.details = details if details is not None else {}
        self.action_button = action_button if action_button is not None else {}

class ValidationException(AppException):
    def __init__(self, status_message="Validation failed", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.VALIDATION_ERROR,
            status_message=status_message,
            status_code=422,
            details=details,
            action_button=action_button
        )

class AuthenticationException(AppException):
    def __init__(self, status_message="Authentication required", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.UNAUTHENTICATED,
            status_message=status_message,
            status_code=401,
            details=details,
            action_button=action_button
        )

class NotFoundException(AppException):
    def __init__(self, status_message="Resource not found", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.NOT_FOUND,
            status_message=status_message,
            status_code=404,
            details=details,
            action_button=action_button
        )

class InsufficientFundsException(AppException):
    def __init__(self, status_message="Insufficient funds", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INSUFFICIENT_FUNDS,
            status_message=status_message,
            status_code=400,
            details=details,
            action_button=action_button
        )

class InvalidStakeException(AppException):
    """Stake outside the game's [min_bet, max_bet] range or not a positive amount."""
    def __init__(self, status_message="Invalid stake", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INVALID_STAKE,
            status_message=status_message,
            status_code=400,
            details=details,
            action_button=action_button
        )

class InvalidStateException(AppException):
    """Action attempted in a phase that does not allow it, e.g. cash-out while waiting."""
    def __init__(self, status_message="Action not allowed in the current state", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INVALID_STATE,
            status_message=status_message,
            status_code=409,
            details=details,
            action_button=action_button
        )

class StaleActionException(AppException):
    """Action arrived after the round or board was already resolved."""
    def __init__(self, status_message="Action arrived after the round was resolved", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.STALE_ACTION,
            status_message=status_message,
            status_code=409,
            details=details,
            action_button=action_button
        )

class LedgerUnavailableException(AppException):
    """Ledger write failed or did not confirm in time. The outcome is unknown until reconciled."""
    def __init__(self, status_message="Balance service unavailable, please retry shortly", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.LEDGER_UNAVAILABLE,
            status_message=status_message,
            status_code=503,
            details=details,
            action_button=action_button
        )

class InternalServerErrorException(AppException):
    def __init__(self, status_message="Internal server error", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INTERNAL_SERVER_ERROR,
            status_message=status_message,
            status_code=500,
            details=details,
            action_button=action_button
        )

class GameNotFoundException(AppException):
    def __init__(self, status_message="Game not found", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.GAME_NOT_FOUND,
            status_message=status_message,
            status_code=404,
            details=details,
            action_button=action_button
        )
