"""Inbound billing webhook admission.

Each webhook is allowlisted, rate limited, secret- and signature-verified,
size-checked, parsed, and handed to the event applier exactly once.
"""
