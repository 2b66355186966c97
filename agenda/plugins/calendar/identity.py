"""
Access token providers for the remote calendar.
The stored authorized-user file is produced by a Google OAuth consent flow run elsewhere.
"""
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]


class AccessTokenProvider(ABC):
    @abstractmethod
    def current_access_token(self) -> Optional[str]:
        """Return a valid bearer token, or None when the user is not signed in.

        Transport failures while obtaining a token are raised, not mapped to None.
        """
        pass


class StaticTokenProvider(AccessTokenProvider):
    """Fixed token from config; an empty value means signed out."""

    def __init__(self, token: Optional[str]):
        self.token = token or None

    def current_access_token(self) -> Optional[str]:
        return self.token


class GoogleCredentialsTokenProvider(AccessTokenProvider):
    """Token from a stored authorized-user JSON file, refreshed and written back when expired."""

    def __init__(self, token_path: str):
        self.token_path = Path(os.path.expandvars(os.path.expanduser(token_path)))
        self.logger = logging.getLogger(self.__class__.__name__)
        self._creds: Optional[Credentials] = None
        self._lock = threading.Lock()

    def current_access_token(self) -> Optional[str]:
        with self._lock:
            creds = self._creds or self._load()
            if creds is None:
                return None
            if not creds.valid:
                if not (creds.expired and creds.refresh_token):
                    self.logger.warning(f"Stored Google credentials in {self.token_path} cannot be refreshed")
                    return None
                try:
                    creds.refresh(Request())
                except RefreshError as e:
                    # Revoked or invalid grant: signed out until a new consent
                    self.logger.warning(f"Google token refresh rejected: {e}")
                    return None
                self._save(creds)
            self._creds = creds
            return creds.token

    def _load(self) -> Optional[Credentials]:
        if not self.token_path.exists():
            self.logger.debug(f"No Google token file at {self.token_path}")
            return None
        try:
            return Credentials.from_authorized_user_file(str(self.token_path), SCOPES)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not load Google token from {self.token_path}: {e}")
            return None

    def _save(self, creds: Credentials) -> None:
        try:
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_path.write_text(creds.to_json())
        except OSError as e:
            self.logger.warning(f"Could not write refreshed Google token to {self.token_path}: {e}")
