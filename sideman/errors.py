"""
Error Types

Exceptions raised by the remote service clients and the playlist pipeline.

Resolution outcomes (not found / ambiguous / rate limited) are NOT exceptions;
see models.ResolutionOutcome. Cancellation is deliberately kept outside the
SidemanError hierarchy so that a broad `except SidemanError` never hides it.
"""


class SidemanError(Exception):
    """Base class for every domain error"""


# ============================================================================
# PROVIDER ERRORS (MusicBrainz, Wikipedia, ListenBrainz, Spotify)
# ============================================================================

class ProviderError(SidemanError):
    """Raised by a remote service client"""

    def __init__(self, message: str = None, service: str = None, context: str = None):
        self.service = service
        self.context = context
        super().__init__(message or self.__class__.__name__)

    def describe(self) -> str:
        """Message with the service and call context, for logging"""
        parts = [str(self)]
        if self.service:
            parts.append(f"service={self.service}")
        if self.context:
            parts.append(f"call={self.context}")
        return ' '.join(parts)


class NotFoundError(ProviderError):
    """The requested entity does not exist (HTTP 404 or empty page)"""


class RateLimitedError(ProviderError):
    """Raised when a service keeps answering 429 after all retries"""

    def __init__(self, retry_after: float = None, service: str = None, context: str = None):
        self.retry_after = retry_after
        message = (f"Rate limit exceeded. Retry after {retry_after} seconds."
                   if retry_after else "Rate limit exceeded.")
        super().__init__(message, service=service, context=context)


class HTTPStatusError(ProviderError):
    """Unexpected HTTP status code"""

    def __init__(self, status_code: int, service: str = None, context: str = None):
        self.status_code = status_code
        super().__init__(f"HTTP status {status_code}", service=service, context=context)


class DecodingError(ProviderError):
    """Response body could not be decoded into the expected shape"""


class NetworkError(ProviderError):
    """Transport level failure (DNS, connection reset, timeout)"""


class NotAuthenticatedError(ProviderError):
    """No usable access token for a service that requires one"""


# ============================================================================
# BUILD ERRORS (discography and playlist pipeline)
# ============================================================================

class PlaylistBuildError(SidemanError):
    """Base class for empty-result conditions in the playlist pipeline"""

    user_message = "Playlist could not be built."

    def __init__(self, message: str = None):
        super().__init__(message or self.user_message)


class NoRecordingsFoundError(PlaylistBuildError):
    user_message = "No recordings were found for this artist."


class NoIntersectionFoundError(PlaylistBuildError):
    user_message = "These two artists share no credited recordings."


class NoTracksResolvedError(PlaylistBuildError):
    user_message = "None of the recordings could be found on Spotify."


class ArtistResolutionFailedError(PlaylistBuildError):
    user_message = "Artist could not be identified on MusicBrainz."

    def __init__(self, artist_name: str):
        self.artist_name = artist_name
        super().__init__(f"Could not resolve artist: {artist_name}")


# ============================================================================
# CANCELLATION
# ============================================================================

class OperationCancelled(Exception):
    """Raised when a CancellationToken is triggered mid-operation"""
