"""Exception taxonomy for the relay.

Nothing here is fatal to the process. Socket handlers catch these at the
boundary:

- ValidationError: bad client input. The client is told, no state changes.
- DuplicateRequestError: already queued or already in a room. Logged, ignored.
- NotFoundError: the room, message or member no longer exists. Logged, no-op.
- CollaboratorError: an external service (ban list, audit log, media relay)
  failed or timed out. Logged, the relay degrades.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""

    error_code = "relay_error"


class ValidationError(RelayError):
    error_code = "invalid_request"


class BannedError(ValidationError):
    error_code = "banned"


class DuplicateRequestError(RelayError):
    error_code = "duplicate_request"


class NotFoundError(RelayError):
    error_code = "not_found"


class CollaboratorError(RelayError):
    error_code = "collaborator_unavailable"
