"""
Credential envelope for user-supplied API keys.

Keys are stored as ``enc:<base64>`` and only unwrapped at the point of use.
Values without the prefix are treated as plaintext so keys inserted by hand
keep working.
"""

import base64

ENVELOPE_PREFIX = "enc:"


def encrypt_api_key(api_key: str) -> str:
    encoded = base64.b64encode(api_key.encode("utf-8")).decode("ascii")
    return f"{ENVELOPE_PREFIX}{encoded}"


def decrypt_api_key(encrypted: str) -> str:
    if not encrypted.startswith(ENVELOPE_PREFIX):
        return encrypted
    encoded = encrypted[len(ENVELOPE_PREFIX):]
    return base64.b64decode(encoded).decode("utf-8")


def mask_api_key(api_key: str) -> str:
    """``****abcd`` style mask for display."""
    return f"****{api_key[-4:]}" if len(api_key) > 4 else "****"
