"""Billing webhook gateway.

Admits inbound payment-provider webhooks (IP allowlist, rate limit, shared
secret, HMAC signature, size guard) and resolves each organization's
effective subscription plan from its stored snapshot.
"""
