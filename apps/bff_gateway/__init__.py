"""OAuth2 backend-for-frontend gateway: server-held sessions with CSRF protection."""
