"""VAPID / application server key helpers.

The client side only needs the fixed public key, decoded to raw bytes for
the subscribe call. The reference store server also needs the private
half to sign outgoing pushes.
"""

import base64
import json
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from tichat_push.app import config
from tichat_push.app.services.logging_service import get_logger

logger = get_logger(__name__)

# Uncompressed P-256 point: 0x04 || X || Y
PUBLIC_KEY_LENGTH = 65


class InvalidApplicationServerKey(ValueError):
    """Raised when an application server key is not a P-256 public point."""


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def b64url_decode(value: str) -> bytes:
    """Decode base64url, restoring the padding the browser format strips."""
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode(value + padding)


def decode_application_server_key(key: str) -> bytes:
    """Decode and validate the public application server key."""
    try:
        raw = b64url_decode(key)
    except (ValueError, TypeError) as e:
        raise InvalidApplicationServerKey(f"Not base64url: {e}") from e
    if len(raw) != PUBLIC_KEY_LENGTH or raw[0] != 0x04:
        raise InvalidApplicationServerKey(
            f"Expected a {PUBLIC_KEY_LENGTH}-byte uncompressed P-256 point, got {len(raw)} bytes"
        )
    return raw


def generate_vapid_keys() -> dict[str, str]:
    """Generate an ECDSA P-256 key pair as base64url strings (no padding)."""
    private_key = ec.generate_private_key(ec.SECP256R1())

    # Private key as raw 32 bytes
    private_raw = private_key.private_numbers().private_value.to_bytes(32, "big")

    # Public key as uncompressed point (65 bytes)
    public_raw = private_key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    return {
        "vapid_public_key": b64url_encode(public_raw),
        "vapid_private_key": b64url_encode(private_raw),
    }


def get_or_create_vapid_keys(keys_file: Path | None = None) -> dict[str, str]:
    """Get existing VAPID keys or generate and store new ones."""
    keys_file = keys_file or config.VAPID_KEYS_FILE
    if keys_file.exists():
        try:
            keys = json.loads(keys_file.read_text(encoding="utf-8"))
            if keys.get("vapid_public_key") and keys.get("vapid_private_key"):
                return keys
        except ValueError as e:
            logger.warning(f"Failed to read {keys_file.name}, regenerating: {e}")

    keys = generate_vapid_keys()
    keys_file.parent.mkdir(parents=True, exist_ok=True)
    keys_file.write_text(json.dumps(keys, indent=2), encoding="utf-8")
    logger.info("Generated new VAPID keys for push notifications")
    return keys
