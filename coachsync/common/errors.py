"""
Error Taxonomy

- ConnectivityError: sync fetch or delivery failed; retried with backoff
- AuthenticationError: bad or expired credential; never retried
- StaleWatermarkError: incremental window exceeded; fall back to full sync
- MalformedFragmentError: unusable transcript fragment; discarded
"""


class CoachSyncError(Exception):
    """Base error for CoachSync."""
    pass


class ConnectivityError(CoachSyncError):
    """Network or server failure while syncing or delivering."""
    pass


class AuthenticationError(CoachSyncError):
    """Credential missing, invalid or expired."""
    pass


class StaleWatermarkError(CoachSyncError):
    """Watermark is older than the server's retained history window."""

    def __init__(self, since, floor):
        super().__init__(f"Watermark {since} is older than retained history ({floor})")
        self.since = since
        self.floor = floor


class MalformedFragmentError(CoachSyncError):
    """Transcript fragment is empty or could not be parsed."""
    pass


class ContentValidationError(CoachSyncError):
    """Payload does not match the schema for its content kind."""
    pass


class RecordNotFoundError(CoachSyncError):
    """No record with this id exists for the team."""
    pass
