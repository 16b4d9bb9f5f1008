"""
Google Docs service construction.

Credentials are read from a JSON file: either a service account key or an
authorized-user token file (token, refresh_token, client_id, client_secret).
"""
import json
import logging
import os
from typing import Any, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

DOCS_SCOPES = ["https://www.googleapis.com/auth/documents"]

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class DocsAuthenticationError(Exception):
    """Raised when Docs credentials cannot be loaded or refreshed."""

    pass


def load_credentials(credentials_file: str) -> Any:
    """
    Load Google credentials for the Docs API from a JSON file.

    Args:
        credentials_file: Path to a service account key or authorized-user file

    Returns:
        A google-auth credentials object scoped for Docs

    Raises:
        DocsAuthenticationError: If the file is missing, unreadable or cannot be refreshed
    """
    if not os.path.exists(credentials_file):
        raise DocsAuthenticationError(f"Credentials file not found: {credentials_file}")

    try:
        with open(credentials_file, "r") as f:
            creds_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DocsAuthenticationError(
            f"Failed to read credentials file {credentials_file}: {e}"
        ) from e

    if creds_data.get("type") == "service_account":
        logger.info(f"Using service account credentials from {credentials_file}")
        return service_account.Credentials.from_service_account_file(
            credentials_file, scopes=DOCS_SCOPES
        )

    try:
        credentials = Credentials(
            token=creds_data.get("token"),
            refresh_token=creds_data.get("refresh_token"),
            token_uri=creds_data.get("token_uri", DEFAULT_TOKEN_URI),
            client_id=creds_data.get("client_id"),
            client_secret=creds_data.get("client_secret"),
            scopes=creds_data.get("scopes", DOCS_SCOPES),
        )
    except (KeyError, ValueError) as e:
        raise DocsAuthenticationError(f"Invalid credential file structure: {e}") from e

    if not credentials.valid:
        if not credentials.refresh_token:
            raise DocsAuthenticationError(
                f"Credentials in {credentials_file} are expired and carry no refresh token"
            )
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            raise DocsAuthenticationError(f"Failed to refresh credentials: {e}") from e
        logger.info("Refreshed Docs credentials")

    return credentials


def build_docs_service(credentials_file: Optional[str]) -> Any:
    """
    Build an authenticated Google Docs v1 service.

    Args:
        credentials_file: Path to the credentials JSON (GOOGLE_DOCS_CREDENTIALS)

    Returns:
        googleapiclient Resource for the Docs API
    """
    if not credentials_file:
        raise DocsAuthenticationError(
            "No credentials configured. Set GOOGLE_DOCS_CREDENTIALS to a service "
            "account key or authorized-user token file."
        )
    credentials = load_credentials(credentials_file)
    return build("docs", "v1", credentials=credentials, cache_discovery=False)
