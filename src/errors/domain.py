"""Typed domain exceptions the API maps to HTTP statuses.

Services raise these instead of HTTP errors so they stay usable from
the CLI and tests; ``src/api/main.py`` renders them.
"""


class NotFoundError(Exception):
    """A record does not exist in the caller's organization. Maps to 404.

    Records in other organizations are reported the same way, so callers
    cannot discover ids outside their own organization.
    """

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier
