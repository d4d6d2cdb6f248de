class PersonalizationError(Exception):
    """Base class for errors raised by the personalization service."""

    error_code = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(PersonalizationError):
    """Rejected before any store is touched."""

    error_code = "invalid_input"
    status_code = 400


class NotFoundError(PersonalizationError):
    error_code = "not_found"
    status_code = 404


class RecommendationError(PersonalizationError):
    """An algorithm or data dependency could not complete. Callers degrade to empty results."""

    error_code = "recommendation_unavailable"
    status_code = 503


class StoreUnavailableError(RecommendationError):
    error_code = "store_unavailable"


class CollaboratorUnavailableError(RecommendationError):
    error_code = "collaborator_unavailable"


class ComputationTimeoutError(RecommendationError):
    error_code = "computation_timeout"


class PoolSaturatedError(PersonalizationError):
    """Raised by pools configured to abort when their queue is full."""

    error_code = "pool_saturated"
    status_code = 503
