"""AES-256-CBC token encryption with a fresh PBKDF2-derived key per secret."""

import logging
import os
from typing import Union

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError

from tenantvault.exceptions import ConfigurationError, CredentialError, DecryptionError
from tenantvault.types import DecryptedToken, EncryptedSecret, format_timestamp, utc_now

logger = logging.getLogger(__name__)

SALT_LENGTH = 32
IV_LENGTH = 16
KEY_LENGTH = 32
MIN_MASTER_KEY_LENGTH = 32
MIN_ITERATIONS = 100_000


class TokenCipher:
    """Encrypts single secret strings under a master key.

    Every call to :meth:`encrypt` draws a new 32-byte salt and 16-byte IV and
    derives a 256-bit AES key with PBKDF2-HMAC-SHA256 over the master key and
    that salt. The salt and IV travel with the ciphertext, hex-encoded, so
    decryption needs only the master key.

    CBC does not authenticate. A wrong master key or corrupted ciphertext
    shows up as a padding or UTF-8 failure, which is reported as
    :class:`DecryptionError`.

    Args:
        master_key: At least 32 characters. Set ``TENANTVAULT_MASTER_KEY``
            (or ``TOKEN_ENCRYPTION_KEY``) in production.
        iterations: PBKDF2 rounds; must be at least 100,000.

    Raises:
        ConfigurationError: missing or short master key, or too few iterations.
    """

    def __init__(self, master_key: str, iterations: int = MIN_ITERATIONS) -> None:
        if not master_key:
            raise ConfigurationError(
                "Token master key is not configured. Set TENANTVAULT_MASTER_KEY "
                "(or TOKEN_ENCRYPTION_KEY)."
            )
        if len(master_key) < MIN_MASTER_KEY_LENGTH:
            raise ConfigurationError(
                f"Token master key must be at least {MIN_MASTER_KEY_LENGTH} characters long"
            )
        if iterations < MIN_ITERATIONS:
            raise ConfigurationError(f"PBKDF2 iterations must be at least {MIN_ITERATIONS}")
        self._master_key = master_key.encode("utf-8")
        self._iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._master_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        """Encrypt *plaintext* under a freshly derived key.

        Raises:
            CredentialError: if *plaintext* is empty.
        """
        if not plaintext:
            raise CredentialError("Token cannot be empty")

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        logger.debug("Token encrypted")
        return EncryptedSecret(
            ciphertext_hex=ciphertext.hex(),
            iv_hex=iv.hex(),
            salt_hex=salt.hex(),
            timestamp=format_timestamp(utc_now()),
        )

    def decrypt(self, secret: Union[EncryptedSecret, str]) -> DecryptedToken:
        """Decrypt a secret produced by :meth:`encrypt`.

        *secret* may be the model or its serialized JSON form.

        Raises:
            DecryptionError: malformed fields, or ciphertext that does not
                decrypt cleanly under the current master key.
        """
        if isinstance(secret, str):
            try:
                secret = EncryptedSecret.parse(secret)
            except (ValueError, ValidationError) as exc:
                raise DecryptionError("Invalid encrypted token data") from exc

        try:
            ciphertext = bytes.fromhex(secret.ciphertext_hex)
            iv = bytes.fromhex(secret.iv_hex)
            salt = bytes.fromhex(secret.salt_hex)
        except ValueError as exc:
            raise DecryptionError("Encrypted token is not valid hex") from exc

        block_bytes = algorithms.AES.block_size // 8
        if len(iv) != IV_LENGTH or not salt:
            raise DecryptionError("Encrypted token has an invalid IV or salt")
        if not ciphertext or len(ciphertext) % block_bytes:
            raise DecryptionError("Encrypted token has an invalid ciphertext length")

        key = self._derive_key(salt)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError(
                "Decryption failed: corrupted token or master key mismatch"
            ) from exc

        logger.debug("Token decrypted")
        return DecryptedToken(token=plaintext, timestamp=secret.timestamp)
