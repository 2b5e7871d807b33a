"""
Error taxonomy shared by services, routes and the client layer.
"""


class JobFeedsError(Exception):
    """Base class for all application errors."""


class NotFoundError(JobFeedsError):
    """Referenced feed or import session does not exist."""

    def __init__(self, entity: str, entity_id: str = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found" if entity_id is None else f"{entity} not found: {entity_id}")


class ValidationError(JobFeedsError):
    """Malformed identifier or invalid feed fields; raised before any mutation."""


class TransientNetworkError(JobFeedsError):
    """Network failure that callers may retry with backoff."""


class InfrastructureFailure(JobFeedsError):
    """The feed could not be fetched or parsed at all."""


class PartialProcessingFailure(JobFeedsError):
    """A single posting could not be parsed or upserted."""
