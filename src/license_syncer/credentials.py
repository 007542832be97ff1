"""Encrypted credential files.

Secrets are stored on disk as Fernet tokens. The key lives only in the
operator's environment (``LICENSE_SYNC_KEY``), so the files are useless when
copied off the host without it.
"""

import logging
import sys

from azure.identity import ClientSecretCredential
from cryptography.fernet import Fernet, InvalidToken

from license_syncer.errors import CredentialError, ExitCode

logger = logging.getLogger(__name__)


def read_secret(path: str, key: str | None) -> str:
    """
    Reads and decrypts a secret from an encrypted credential file.

    Args:
        path: Path of the file holding the Fernet token.
        key: The Fernet key (urlsafe base64).

    Returns:
        str: The decrypted secret.

    Raises:
        CredentialError: If the file cannot be read or the token does not decrypt.
    """
    logger.info(f"Loading encrypted credential from {path}")
    if not key:
        raise CredentialError("LICENSE_SYNC_KEY is not set; cannot decrypt credentials.")
    try:
        with open(path, "rb") as f:
            token = f.read().strip()
    except OSError as e:
        logger.error(f"Cannot read credential file {path}: {e}")
        raise CredentialError(f"Cannot read credential file {path}: {e}") from e
    try:
        return Fernet(key.encode()).decrypt(token).decode()
    except (InvalidToken, ValueError) as e:
        # ValueError covers a malformed key.
        logger.error(f"Credential file {path} could not be decrypted: {e!r}")
        raise CredentialError(
            f"Credential file {path} is corrupt or was encrypted with a different key."
        ) from e


def build_graph_credential(
    tenant_id: str | None, client_id: str | None, client_secret: str
) -> ClientSecretCredential:
    """Builds the app-only credential used by the Graph client."""
    if not tenant_id or not client_id:
        raise CredentialError(
            "AZURE_TENANT_ID and AZURE_CLIENT_ID must both be set.",
            exit_code=ExitCode.CREDENTIAL_BUILD,
        )
    try:
        return ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
    except ValueError as e:
        logger.error(f"Invalid Graph credential parameters: {e}")
        raise CredentialError(str(e), exit_code=ExitCode.CREDENTIAL_BUILD) from e


def encrypt_secret(secret: str, key: str) -> bytes:
    return Fernet(key.encode()).encrypt(secret.encode())


def main(argv: list[str] | None = None) -> None:
    """Writes an encrypted credential file: ``python -m license_syncer.credentials OUT``.

    The secret is read from stdin; a fresh key is printed when none is set.
    """
    import getpass
    import os

    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m license_syncer.credentials OUTPUT_FILE", file=sys.stderr)
        raise SystemExit(2)
    key = os.getenv("LICENSE_SYNC_KEY")
    if not key:
        key = Fernet.generate_key().decode()
        print(f"LICENSE_SYNC_KEY={key}")
    secret = getpass.getpass("Secret: ")
    with open(args[0], "wb") as f:
        f.write(encrypt_secret(secret, key))
    print(f"Wrote {args[0]}")


if __name__ == "__main__":
    main()
