"""Exception hierarchy for the tab recording core."""


class TrailblazerError(Exception):
    """Base error type for tracker, store and adapter failures."""


class UnimplementedTransition(TrailblazerError):
    """A declared action has no implemented state transition."""

    def __init__(self, action_type: str):
        super().__init__(f"unimplemented transition: {action_type}")
        self.action_type = action_type


class TransactionFailure(TrailblazerError):
    """A store transaction aborted and none of its writes were kept."""

    def __init__(self, message: str, *, tab_id: int | None = None):
        super().__init__(message)
        self.tab_id = tab_id


class UnknownStoreError(TrailblazerError):
    """Object store is not part of the schema or the transaction scope."""

    def __init__(self, store_name: str):
        super().__init__(f"unknown object store: {store_name}")
        self.store_name = store_name


class RecordNotFound(TrailblazerError):
    """Strict lookup missed."""

    def __init__(self, store_name: str, key: object):
        super().__init__(f"{store_name} record not found: {key}")
        self.store_name = store_name
        self.key = key


class ConfigError(TrailblazerError):
    """Invalid configuration value."""


class HostUnavailable(TrailblazerError):
    """The browser host bridge could not be reached or answered with an error."""
