"""In-process infrastructure: cache, rate limiter and health checks."""
