class ErrorCodes:
    """String error codes returned in the `error_code` field of every error response."""

    GENERIC_ERROR = 'GENERIC_ERROR'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    UNAUTHENTICATED = 'UNAUTHENTICATED'
    FORBIDDEN = 'FORBIDDEN'
    NOT_FOUND = 'NOT_FOUND'
    METHOD_NOT_ALLOWED = 'METHOD_NOT_ALLOWED'
    INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'

    # Wager / ledger errors
    INSUFFICIENT_FUNDS = 'INSUFFICIENT_FUNDS'
    INVALID_STAKE = 'INVALID_STAKE'
    INVALID_STATE = 'INVALID_STATE'
    LEDGER_UNAVAILABLE = 'LEDGER_UNAVAILABLE'
    STALE_ACTION = 'STALE_ACTION'
    GAME_NOT_FOUND = 'GAME_NOT_FOUND'
