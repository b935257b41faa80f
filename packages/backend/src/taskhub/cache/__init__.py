"""Redis connection pool shared by the rate limiter."""
