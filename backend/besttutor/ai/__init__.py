"""AI request orchestration: caching, rate limiting, batching and structured generation."""
