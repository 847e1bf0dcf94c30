"""
Credential vault: AES-256-CBC envelopes for secrets stored on disk

An envelope is ``base64(iv) + ':' + base64(ciphertext)``. The key lives in
``$HADS_HOME/keys/secret.key`` (``~/.hads`` by default), is generated on first
use and cached for the rest of the process.
"""
import base64
import binascii
import os
import secrets
import threading
from pathlib import Path

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from hads.exceptions import VaultError
from hads.utils.logger import setup_logger

logger = setup_logger(__name__)

KEY_SIZE = 32  # 256 bits
IV_SIZE = 16

_cached_key = None
_key_lock = threading.Lock()


def get_hads_home():
    return Path(os.getenv('HADS_HOME', Path.home() / '.hads')).expanduser()


def get_key_file():
    return get_hads_home() / 'keys' / 'secret.key'


def _save_key(key, key_file):
    try:
        key_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(key)
        # The mode passed to os.open is filtered by umask
        os.chmod(key_file, 0o600)
    except OSError as e:
        raise VaultError(f"Failed to save key file {key_file}: {e}") from e
    logger.info(f"Generated new encryption key: {key_file}")


def _load_key(key_file):
    try:
        key = key_file.read_bytes()
    except OSError as e:
        raise VaultError(f"Failed to read key file {key_file}: {e}") from e
    if len(key) != KEY_SIZE:
        raise VaultError(f"Key file {key_file} is corrupt: expected {KEY_SIZE} bytes, got {len(key)}")
    logger.debug(f"Loaded encryption key from {key_file}")
    return key


def get_or_create_key():
    """
    Return the process-wide key, loading or generating it on first use

    Returns:
        Raw 32 byte key
    """
    global _cached_key

    with _key_lock:
        if _cached_key is not None:
            return _cached_key

        key_file = get_key_file()
        if key_file.exists():
            key = _load_key(key_file)
        else:
            key = secrets.token_bytes(KEY_SIZE)
            _save_key(key, key_file)

        _cached_key = key
        return key


def clear_cached_key():
    global _cached_key
    with _key_lock:
        _cached_key = None
    logger.debug("Cleared cached encryption key")


def encrypt(plaintext):
    """
    Encrypt a secret into an envelope

    Args:
        plaintext: Secret text; empty or None passes through unchanged

    Returns:
        Envelope string
    """
    if not plaintext:
        return plaintext

    key = get_or_create_key()
    iv = secrets.token_bytes(IV_SIZE)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return f"{base64.b64encode(iv).decode('ascii')}:{base64.b64encode(ciphertext).decode('ascii')}"


def decrypt(envelope):
    """
    Decrypt an envelope produced by encrypt()

    Args:
        envelope: Envelope string; empty or None passes through unchanged

    Raises:
        VaultError: Malformed envelope or wrong key

    Returns:
        Plaintext secret
    """
    if not envelope:
        return envelope

    parts = envelope.split(':')
    if len(parts) != 2:
        raise VaultError("Malformed secret envelope: expected '<iv>:<ciphertext>'")

    try:
        iv = base64.b64decode(parts[0], validate=True)
        ciphertext = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise VaultError(f"Malformed secret envelope: {e}") from e

    if len(iv) != IV_SIZE or not ciphertext or len(ciphertext) % IV_SIZE:
        raise VaultError("Malformed secret envelope: bad IV or ciphertext length")

    key = get_or_create_key()
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    try:
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode('utf-8')
    except (ValueError, UnicodeDecodeError) as e:
        raise VaultError("Failed to decrypt secret: wrong key or corrupt data") from e
