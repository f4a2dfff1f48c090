"""Secret Vault — Encrypted credential storage bound to tenants.

Security Note (Threat Model):
    Credentials are decrypted in process memory only while a request or a
    bot session needs them. A memory dump of the process could expose the
    master key and any plaintext in use. This is an accepted limitation.
"""

from .crypto import SecretCodec, generate_master_key, parse_master_key
from .store import SecretName, SecretStore
from .credentials import CredentialService
from .key_rotation import rotate_master_key

__all__ = [
    "SecretCodec",
    "SecretName",
    "SecretStore",
    "CredentialService",
    "rotate_master_key",
    "generate_master_key",
    "parse_master_key",
]
