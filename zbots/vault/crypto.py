"""
Vault Crypto Core — Symmetric encryption of secret strings.

Ciphertext token format (both halves hex-encoded)::

    <iv 16B> ":" <AES-256-CBC(PKCS7(plaintext)) || HMAC-SHA256 tag 32B>

- Encryption key: the raw 32-byte master key.
- MAC key: HKDF(master_key, "zbots-secret-mac"), tag computed over iv||ct.

Security Note:
    Never log plaintext or ciphertext values.
    A fresh random IV is generated for every encrypt() call.
"""
import os
import re
import secrets
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger("zbots.vault")

IV_SIZE = 16  # AES block size
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 32  # HMAC-SHA256
BLOCK_BITS = 128
SEPARATOR = ":"
_HEX = re.compile(r"[0-9a-fA-F]*")


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte sub-key using HKDF-SHA256.

    Args:
        seed: Input key material (the master key bytes).
        context: Context string for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def parse_master_key(value: str | None) -> bytes:
    """Decode a 64-character hex master key.

    Raises:
        ConfigurationError: If the value is absent, not hex,
            or does not decode to exactly 32 bytes.
    """
    if not value:
        raise ConfigurationError("ENCRYPTION_KEY environment variable is not set.")
    try:
        key = bytes.fromhex(value.strip())
    except ValueError:
        raise ConfigurationError(
            "ENCRYPTION_KEY must be a hex string."
        ) from None
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"ENCRYPTION_KEY must be a {KEY_LENGTH}-byte "
            f"({KEY_LENGTH * 2} hex characters) string, got {len(key)} bytes."
        )
    return key


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return it as hex.

    This is a utility for operators to generate new keys.
    """
    return secrets.token_hex(KEY_LENGTH)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class SecretCodec:
    """Encrypts and decrypts secret strings with a fixed master key.

    The key length is enforced at construction, so a codec instance that
    exists can always encrypt.
    """

    def __init__(self, master_key: bytes | None):
        if master_key is None or len(master_key) != KEY_LENGTH:
            raise ConfigurationError(
                f"Master key must be exactly {KEY_LENGTH} bytes."
            )
        self._key = bytes(master_key)
        self._mac_key = derive_key(self._key, "zbots-secret-mac")

    @classmethod
    def from_hex(cls, value: str | None) -> "SecretCodec":
        return cls(parse_master_key(value))

    def _tag(self, iv: bytes, ct: bytes) -> hmac.HMAC:
        mac = hmac.HMAC(self._mac_key, hashes.SHA256())
        mac.update(iv)
        mac.update(ct)
        return mac

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string into a ciphertext token.

        Args:
            plaintext: Secret value (any string, including empty).

        Returns:
            ``hex(iv):hex(ciphertext||tag)``.
        """
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(padded) + encryptor.finalize()
        tag = self._tag(iv, ct).finalize()
        return iv.hex() + SEPARATOR + (ct + tag).hex()

    def decrypt(self, token: str) -> str:
        """Decrypt a ciphertext token produced by :meth:`encrypt`.

        Raises:
            DecryptionError: If the token is malformed, was tampered with,
                or was encrypted with a different master key.
        """
        iv_hex, sep, body_hex = token.partition(SEPARATOR)
        if not sep:
            raise DecryptionError("Ciphertext token is missing the separator")
        # bytes.fromhex() would skip whitespace
        if not (_HEX.fullmatch(iv_hex) and _HEX.fullmatch(body_hex)):
            raise DecryptionError("Ciphertext token is not valid hex")
        try:
            iv = bytes.fromhex(iv_hex)
            body = bytes.fromhex(body_hex)
        except ValueError:
            raise DecryptionError("Ciphertext token is not valid hex") from None
        if len(iv) != IV_SIZE:
            raise DecryptionError(
                f"Invalid IV length: {len(iv)} bytes (expected {IV_SIZE})"
            )
        _min = TAG_SIZE + IV_SIZE  # one block + tag
        if len(body) < _min or (len(body) - TAG_SIZE) % IV_SIZE:
            raise DecryptionError(
                f"Ciphertext has invalid length: {len(body)} bytes"
            )
        ct, tag = body[:-TAG_SIZE], body[-TAG_SIZE:]
        try:
            self._tag(iv, ct).verify(tag)
        except InvalidSignature:
            raise DecryptionError(
                "Integrity check failed (wrong master key or tampered data)"
            ) from None
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as err:
            raise DecryptionError("Decrypted payload is corrupt") from err
