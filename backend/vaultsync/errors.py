class StoreConfigError(RuntimeError):
    """The remote store cannot be built (missing database URL)."""


class InvalidTeamError(ValueError):
    """A team identifier is missing, blank or too long."""
