from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from google.oauth2.credentials import Credentials

from tubelift.utils.clock import utcnow, to_naive_utc


@dataclass
class OAuthToken:
    """
    Canonical credential model for the entire package.
    Expiry is always naive UTC to satisfy google-auth library internals.
    """
    access_token: str
    refresh_token: Optional[str]
    token_uri: str
    client_id: str
    client_secret: str
    scopes: List[str] = field(default_factory=list)
    expiry: Optional[datetime] = None

    def __post_init__(self):
        self.expiry = to_naive_utc(self.expiry)
        self.scopes = sorted(set(self.scopes or []))

    def covers(self, scopes: Iterable[str]) -> bool:
        """True if every requested scope was granted"""
        return set(scopes).issubset(self.scopes)

    def is_expired(self, skew_seconds: int = 0, now: Optional[datetime] = None) -> bool:
        """
        True if the access token must not be used anymore.
        A token without expiry is treated as expired so it gets refreshed.
        """
        if not self.access_token or self.expiry is None:
            return True
        now = now or utcnow()
        return now >= self.expiry - timedelta(seconds=skew_seconds)

    def to_dict(self) -> dict:
        """JSON-safe dict for durable storage"""
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_uri': self.token_uri,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'scopes': self.scopes,
            'expiry': self.expiry.isoformat() if self.expiry else None
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OAuthToken":
        expiry = data.get('expiry')
        if isinstance(expiry, str):
            expiry = datetime.fromisoformat(expiry)
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            token_uri=data['token_uri'],
            client_id=data['client_id'],
            client_secret=data.get('client_secret', ''),
            scopes=data.get('scopes') or [],
            expiry=expiry
        )

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "OAuthToken":
        """Build the canonical model from google-auth credentials"""
        return cls(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            token_uri=credentials.token_uri,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            scopes=list(credentials.scopes or []),
            expiry=credentials.expiry
        )

    def to_credentials(self) -> Credentials:
        return Credentials(
            token=self.access_token,
            refresh_token=self.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes,
            expiry=self.expiry,
        )
