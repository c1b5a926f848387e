"""CAS authentication client, ticket validation and WSGI middleware."""

__version__ = "2.0.0"
__all__ = ["client", "context", "logout_request", "service_response", "stores", "urls", "validate"]