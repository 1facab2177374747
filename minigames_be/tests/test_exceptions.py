import pytest
from minigames_be.exceptions import (
    AppException,
    ValidationException,
    AuthenticationException,
    NotFoundException,
    InsufficientFundsException,
    InvalidStakeException,
    InvalidStateException,
    StaleActionException,
    LedgerUnavailableException,
    InternalServerErrorException,
    GameNotFoundException
)
from minigames_be.error_codes import ErrorCodes

def test_app_exception_instantiation():
    details = {"field": "value"}
    action_button = {"text": "Retry", "actionType": "RETRY_ACTION"}

    exc = AppException(
        error_code="TEST_001",
        status_message="Test message",
        status_code=400,
        details=details,
        action_button=action_button
    )

    assert exc.error_code == "TEST_001"
    assert exc.status_message == "Test message"
    assert exc.status_code == 400
    assert exc.details == details
    assert exc.action_button == action_button
    assert str(exc) == "Test message"

def test_app_exception_defaults():
    exc = AppException(error_code="TEST_002", status_message="Default test", status_code=500)
    assert exc.details == {}
    assert exc.action_button == {}

@pytest.mark.parametrize("exc_class, error_code, status_code", [
    (ValidationException, ErrorCodes.VALIDATION_ERROR, 422),
    (AuthenticationException, ErrorCodes.UNAUTHENTICATED, 401),
    (NotFoundException, ErrorCodes.NOT_FOUND, 404),
    (InsufficientFundsException, ErrorCodes.INSUFFICIENT_FUNDS, 400),
    (InvalidStakeException, ErrorCodes.INVALID_STAKE, 400),
    (InvalidStateException, ErrorCodes.INVALID_STATE, 409),
    (StaleActionException, ErrorCodes.STALE_ACTION, 409),
    (LedgerUnavailableException, ErrorCodes.LEDGER_UNAVAILABLE, 503),
    (InternalServerErrorException, ErrorCodes.INTERNAL_SERVER_ERROR, 500),
    (GameNotFoundException, ErrorCodes.GAME_NOT_FOUND, 404),
])
def test_exception_codes(exc_class, error_code, status_code):
    exc = exc_class(status_message="Something happened", details={"wager_id": 7})
    assert exc.error_code == error_code
    assert exc.status_code == status_code
    assert exc.status_message == "Something happened"
    assert exc.details == {"wager_id": 7}
    with pytest.raises(AppException):
        raise exc

def test_insufficient_funds_default_message():
    exc = InsufficientFundsException(details={'balance': '5.00', 'required': '10.00'})
    assert exc.status_message == "Insufficient funds"
    assert exc.details['required'] == '10.00'

def test_stale_action_is_not_invalid_state():
    # clients retry neither, but they are reported differently
    with pytest.raises(StaleActionException):
        raise StaleActionException()
    assert not issubclass(StaleActionException, InvalidStateException)
