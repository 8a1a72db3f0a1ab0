"""Request admission primitives: client identity, IP allowlist, rate limiting."""
