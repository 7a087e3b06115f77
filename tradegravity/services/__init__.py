"""Infrastructure services: HTTP clients, rate limiting, persistence."""
