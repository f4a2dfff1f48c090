"""
Vault Key Rotation — Batch re-encryption of secrets when rotating master keys.

Re-encrypts every stored secret from the old master key to the new one in
pages of ``batch_size`` rows. The operation is idempotent: secrets that
already decrypt with the new key are skipped, so an interrupted rotation can
simply be run again.

Security Note:
    Plaintext exists in memory only during re-encryption of each row.
    Never log plaintext or ciphertext values.
"""
import logging

from ..exceptions import DecryptionError
from .crypto import SecretCodec
from .store import SecretStore

logger = logging.getLogger("zbots.vault")


async def rotate_master_key(
    store: SecretStore,
    old_codec: SecretCodec,
    new_codec: SecretCodec,
    batch_size: int = 100,
) -> dict:
    """Re-encrypt all secrets from ``old_codec`` to ``new_codec``.

    Args:
        store: Secret store holding the records.
        old_codec: Codec built from the current (outgoing) master key.
        new_codec: Codec built from the replacement master key.
        batch_size: Number of rows read per page.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    offset = 0

    logger.info("Starting key rotation (batch_size=%d)", batch_size)

    while True:
        rows = await store.fetch_batch(batch_size, offset)
        if not rows:
            break

        batch_num = (offset // batch_size) + 1
        logger.info("Processing batch %d (%d rows)", batch_num, len(rows))

        for row in rows:
            stats["total"] += 1
            tenant_id = row["tenant_id"]
            secret_name = row["secret_name"]
            ciphertext = row["ciphertext"]
            try:
                new_codec.decrypt(ciphertext)
            except DecryptionError:
                pass
            else:
                stats["skipped"] += 1
                continue
            try:
                plaintext = old_codec.decrypt(ciphertext)
            except DecryptionError as err:
                logger.error(
                    "Error rotating secret tenant=%s name=%s: %s",
                    tenant_id, secret_name, err,
                )
                stats["errors"] += 1
                continue
            await store.put(tenant_id, secret_name, new_codec.encrypt(plaintext))
            stats["rotated"] += 1

        offset += len(rows)

    logger.info("Key rotation complete: %s", stats)
    return stats
