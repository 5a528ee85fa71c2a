from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from hlsdl.errors import DecryptionError


KEY_SIZE = 16


def decrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    """AES-128-CBC decrypt ``data`` and strip its PKCS#7 padding."""
    if len(key) != KEY_SIZE:
        raise DecryptionError(f"key is {len(key)} bytes, AES-128 needs {KEY_SIZE}")
    if len(iv) != AES.block_size:
        raise DecryptionError(f"iv is {len(iv)} bytes, expected {AES.block_size}")
    if not data or len(data) % AES.block_size:
        raise DecryptionError(f"ciphertext length {len(data)} is not a multiple of {AES.block_size}")
    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    try:
        return unpad(cipher.decrypt(data), AES.block_size)
    except ValueError as e:
        raise DecryptionError(f"bad padding: {e}") from e
