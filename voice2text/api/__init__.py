"""Azure Media Services REST API client package.

WHY: Isolates all HTTP communication with Azure AD, the Media Services
REST endpoint and blob storage behind a clean interface.

HOW: auth.py obtains the bearer token, client.py exposes
MediaServicesClient for entity operations, transfer.py moves blob data,
and models.py holds the typed entities.
"""

from voice2text.api.auth import AuthenticationFailed, TokenCredentials, authenticate
from voice2text.api.client import MediaServicesAPIError, MediaServicesClient, ProcessorNotFound
from voice2text.api.transfer import BlobTransferClient, DownloadFailed, UploadFailed

__all__ = [
    "AuthenticationFailed",
    "BlobTransferClient",
    "DownloadFailed",
    "MediaServicesAPIError",
    "MediaServicesClient",
    "ProcessorNotFound",
    "TokenCredentials",
    "UploadFailed",
    "authenticate",
]
