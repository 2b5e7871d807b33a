"""
Error taxonomy as seen by dashboard clients.
"""
from app.services.errors import (  # noqa: F401
    JobFeedsError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
