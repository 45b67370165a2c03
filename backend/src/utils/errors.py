"""
Engine error taxonomy.

Invariant violations indicate a caller bug: they are raised before any write
and must not be retried blindly. Transient API failures live with the
football-data client.
"""


class EngineError(Exception):
    """Base exception for engine errors."""
    pass


class FixtureNotFoundError(EngineError, LookupError):
    """Raised when a fixture id does not exist in the fixture store."""

    def __init__(self, fixture_id: str):
        super().__init__(f"Fixture {fixture_id} not found")
        self.fixture_id = fixture_id


class InvariantViolationError(EngineError):
    """Base for rejected operations that would break a data invariant."""
    pass


class FixtureNotFinishedError(InvariantViolationError):
    """Raised when standings are updated for a fixture that is not FINISHED with scores."""

    def __init__(self, fixture_id: str, status: str):
        super().__init__(f"Fixture {fixture_id} is {status}, not FINISHED with scores")
        self.fixture_id = fixture_id
        self.status = status


class ScoreMismatchError(InvariantViolationError):
    """Raised when a caller scores a fixture with a result that differs from the stored one."""
    pass


class DuplicatePredictionError(InvariantViolationError):
    """Raised when a second prediction is inserted for the same user, fixture and organization."""

    def __init__(self, user_id: str, fixture_id: str, organization_id: str):
        super().__init__(
            f"Prediction already exists for user {user_id}, "
            f"fixture {fixture_id}, organization {organization_id}"
        )
        self.user_id = user_id
        self.fixture_id = fixture_id
        self.organization_id = organization_id


class PredictionLockedError(InvariantViolationError):
    """Raised when a prediction is submitted after the fixture's cutoff."""
    pass


class InvalidMultiplierError(InvariantViolationError, ValueError):
    """Raised for a points multiplier that is not an integer >= 1."""
    pass
