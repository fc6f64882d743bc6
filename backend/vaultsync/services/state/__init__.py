"""Team state services: normalization rules and the remote store.

Routes and CLI commands import from here so HTTP concerns stay out of the
persistence and sanitization logic.
"""
