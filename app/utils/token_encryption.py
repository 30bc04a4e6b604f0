"""
Encryption at rest for the token columns of airtable_credentials.

Rows are read into Credential models with plaintext tokens and token updates are
sealed just before they are written. Encryption is off until token_encryption_key
holds a Fernet key; rows written before it was enabled stay readable.
"""

from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.models.database import Credential

logger = structlog.get_logger()

SEALED_FIELDS = ("access_token", "refresh_token")

# Every Fernet token starts with the base64 of its version byte and timestamp
FERNET_PREFIX = "gAAAAA"


def token_cipher() -> Fernet | None:
    """Fernet for the configured key, or None when encryption is disabled."""
    key = (settings.token_encryption_key or "").strip()
    if not key:
        return None
    try:
        return Fernet(key.encode("utf-8"))
    except ValueError as e:
        logger.warning("Invalid token_encryption_key, tokens stored in plaintext", error=str(e))
        return None


def is_sealed(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(FERNET_PREFIX)


def seal_token_updates(token_updates: dict[str, Any]) -> dict[str, Any]:
    """Copy of a credential update with its token values encrypted."""
    sealed = dict(token_updates)
    cipher = token_cipher()
    if cipher is None:
        return sealed
    for name in SEALED_FIELDS:
        value = sealed.get(name)
        if value and not is_sealed(value):
            sealed[name] = cipher.encrypt(value.encode("utf-8")).decode("ascii")
    return sealed


def credential_from_row(row: dict[str, Any]) -> Credential:
    """
    Build a Credential from an airtable_credentials row, decrypting its tokens.

    A token sealed with another key is kept as stored; Airtable then answers 401
    and the owner has to reconnect.
    """
    credential = Credential.model_validate(row)
    cipher = token_cipher()
    if cipher is None:
        return credential

    opened: dict[str, str] = {}
    for name in SEALED_FIELDS:
        value = getattr(credential, name)
        if not is_sealed(value):
            continue
        try:
            opened[name] = cipher.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.warning(
                "Could not decrypt Airtable token with current key",
                credential_id=str(credential.id) if credential.id else None,
                owner_id=credential.owner_id,
                token_field=name,
            )
    return credential.model_copy(update=opened) if opened else credential
