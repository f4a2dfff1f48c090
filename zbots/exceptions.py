"""
Error taxonomy shared by the vault, the bot supervisor and the web layer.

Absence of a stored secret is never an exception: lookups return ``None``.
"""


class ZbotsError(Exception):
    """Base error for all ZBØTS failures."""


class ConfigurationError(ZbotsError):
    """Missing or malformed process configuration (fatal at startup)."""


class ValidationError(ZbotsError):
    """A caller-supplied secret failed its format check."""


class DecryptionError(ZbotsError):
    """Ciphertext cannot be read with the current master key."""


class AuthenticationRejected(ZbotsError):
    """A remote service (Discord or the LLM provider) rejected a credential."""


class TransientIOError(ZbotsError):
    """Store or network hiccup; the operation is safe to retry."""


class ProviderError(ZbotsError):
    """The LLM provider refused the request itself (bad model, bad input)."""
