"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Each exception carries the HTTP status the webhook endpoints answer with.
Ad networks generally do not retry 4xx responses, so only infrastructure
failures map to 5xx.
"""


class RewardError(Exception):
    """Base exception for all reward errors."""

    http_status: int = 500


class InvalidInputError(RewardError):
    """Raised when a callback is malformed, unsigned, or its signature does not match."""

    http_status = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid input: {message}")


class BadRequestError(RewardError):
    """Raised when a callback names a reward type we do not recognize."""

    http_status = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Bad request: {message}")


class ForbiddenError(RewardError):
    """Raised when a reward type is disabled or not configured."""

    http_status = 403

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Forbidden: {message}")


class OperationFailedError(RewardError):
    """Raised when an infrastructure operation fails (key fetch, config load)."""

    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Operation failed: {message}")


class ServerError(RewardError):
    """Raised when the server is misconfigured (missing secret, unconfigured platform)."""

    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Server error: {message}")


class NotFoundError(RewardError):
    """Raised by repositories when a record doesn't exist."""

    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class EntitlementsNotFoundError(NotFoundError):
    """Raised when a user has no entitlements record yet."""

    def __init__(self, user_id: str) -> None:
        super().__init__("UserEntitlements", user_id)
        self.user_id = user_id


class RewardConfigNotFoundError(NotFoundError):
    """Raised when the reward configuration document is missing."""

    def __init__(self, config_id: str) -> None:
        super().__init__("RewardConfig", config_id)
        self.config_id = config_id


class ConcurrencyError(RewardError):
    """Raised when concurrent modification detected."""

    http_status = 500

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class IdempotencyConflictError(RewardError):
    """Raised when an event id is recorded twice."""

    http_status = 409

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Idempotency conflict: record {record_id} already exists")
