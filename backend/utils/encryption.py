"""
Custodial wallet key encryption.
"""
from cryptography.fernet import Fernet, InvalidToken


def generate_encryption_key() -> str:
    """Generate a new Fernet key for WALLET_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode('utf-8')


def encrypt_private_key(private_key: str, encryption_key: str) -> str:
    """Encrypt a wallet's base58 private key for storage."""
    f = Fernet(encryption_key.encode())
    return f.encrypt(private_key.encode()).decode('utf-8')


def decrypt_private_key(encrypted_private_key: str, encryption_key: str) -> str:
    """Decrypt a stored wallet private key.

    Raises:
        ValueError: If the key does not match or the token was tampered with.
    """
    f = Fernet(encryption_key.encode())
    try:
        return f.decrypt(encrypted_private_key.encode()).decode('utf-8')
    except InvalidToken as e:
        raise ValueError("Unable to decrypt wallet private key") from e
