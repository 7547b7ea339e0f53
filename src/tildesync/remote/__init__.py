from .client import RemoteDocumentClient, RateLimitInfo

__all__ = [
    'RemoteDocumentClient',
    'RateLimitInfo'
]
