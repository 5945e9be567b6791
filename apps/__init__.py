"""
Apps package - FastAPI services.

- bff_gateway: OAuth2 backend-for-frontend with server-side sessions and CSRF protection
"""
