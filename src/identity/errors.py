from __future__ import annotations


class IdentityError(Exception):
    pass


class PlayerNotFound(IdentityError):
    """The identity service has no profile for the name or id. Expected outcome."""


class IdentityServiceError(IdentityError):
    """Transport, HTTP status or payload failure talking to the identity service."""
