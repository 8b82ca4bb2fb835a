"""Collection pipeline: navigation, proxies, rate limiting, orchestration and scheduling."""
