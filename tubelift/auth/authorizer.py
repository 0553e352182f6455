from __future__ import annotations
"""
Authorizer - turns a scope set plus stored or fresh user consent into a
valid access token, refreshing expired tokens transparently.
"""

import threading
from typing import Callable, Dict, Iterable, Optional, Set
from urllib.parse import urlparse, parse_qs

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import (
    AccessDeniedError,
    InvalidGrantError,
    OAuth2Error,
)

from tubelift.auth.token_model import OAuthToken
from tubelift.auth.token_store import TokenStore
from tubelift.config.upload_defaults import REVOKE_URL
from tubelift.errors import AuthError, AuthErrorKind
from tubelift.settings import settings
from tubelift.utils.log import log_event

# Receives the authorization URL, returns the authorization code
# (None when the user declined).
ConsentPrompt = Callable[[str], Optional[str]]


def console_consent(authorization_url: str) -> Optional[str]:
    """
    Ask the user to approve access in a browser and paste back either the
    authorization code or the full redirect URL.
    """
    print("\nOpen this URL in your browser and approve access:\n")
    print(f"  {authorization_url}\n")
    answer = input("Paste the authorization code or redirect URL: ").strip()
    return extract_authorization_code(answer)


def extract_authorization_code(answer: str) -> Optional[str]:
    """Pull the code out of a pasted redirect URL; None if consent was denied"""
    if not answer:
        return None
    if "://" not in answer:
        return answer
    query = parse_qs(urlparse(answer).query)
    if "error" in query:
        return None
    codes = query.get("code")
    return codes[0] if codes else None


class Authorizer:
    """
    Owns the in-memory credential cache for every identity it serves.

    Refresh-and-persist for one identity runs under that identity's lock so
    concurrent callers never spend the same refresh token twice.
    """

    def __init__(
        self,
        token_store: TokenStore,
        client_config: Optional[dict] = None,
        consent_prompt: Optional[ConsentPrompt] = None,
        flow_factory: Optional[Callable[..., Flow]] = None,
        request: Optional[Request] = None,
        redirect_uri: Optional[str] = None,
        expiry_skew_seconds: Optional[int] = None,
    ):
        self.token_store = token_store
        self.client_config = client_config or settings.client_config
        self.consent_prompt = consent_prompt or console_consent
        self.flow_factory = flow_factory or Flow.from_client_config
        self.request = request or Request()
        self.redirect_uri = redirect_uri or settings.OAUTH_REDIRECT_URI
        self.expiry_skew_seconds = (
            settings.TOKEN_EXPIRY_SKEW_SECONDS if expiry_skew_seconds is None else expiry_skew_seconds
        )

        self._cache: Dict[str, OAuthToken] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, identity: str) -> threading.Lock:
        with self._locks_guard:
            if identity not in self._locks:
                self._locks[identity] = threading.Lock()
            return self._locks[identity]

    # ============================================================
    # AUTHORIZE
    # ============================================================

    def authorize(self, scopes: Iterable[str], identity: str) -> OAuthToken:
        """
        Return a non-expired credential for identity covering scopes.

        Raises:
            AuthError: DENIED, NETWORK_FAILURE or INVALID_GRANT
        """
        requested = set(scopes)

        with self._lock_for(identity):
            token = self._cache.get(identity)
            if token is None:
                token = self.token_store.load(identity)
                if token is not None:
                    self._cache[identity] = token

            if token is not None and token.covers(requested):
                if not token.is_expired(self.expiry_skew_seconds):
                    return token

                if token.refresh_token:
                    try:
                        return self._refresh(identity, token)
                    except AuthError as e:
                        if e.kind != AuthErrorKind.INVALID_GRANT:
                            raise
                        log_event("AUTH", f"[{identity}] Refresh token rejected, discarding stored credential", "WARNING")
                        self._discard(identity)
                        token = None

            granted = set(token.scopes) if token else set()
            return self._consent(identity, requested | granted)

    def _refresh(self, identity: str, token: OAuthToken) -> OAuthToken:
        log_event("AUTH", f"[{identity}] Token expired (expiry: {token.expiry}), refreshing...", "PROGRESS")
        credentials = token.to_credentials()

        try:
            credentials.refresh(self.request)
        except TransportError as e:
            log_event("AUTH", f"[{identity}] Token endpoint unreachable: {e}", "ERROR")
            raise AuthError(AuthErrorKind.NETWORK_FAILURE, f"Token endpoint unreachable: {e}") from e
        except RefreshError as e:
            if getattr(e, "retryable", False):
                log_event("AUTH", f"[{identity}] Refresh failed transiently: {e}", "ERROR")
                raise AuthError(AuthErrorKind.NETWORK_FAILURE, f"Token refresh failed: {e}") from e
            log_event("AUTH", f"[{identity}] Refresh rejected: {e}", "ERROR")
            raise AuthError(AuthErrorKind.INVALID_GRANT, f"Refresh token rejected: {e}") from e

        refreshed = OAuthToken.from_credentials(credentials)
        # Providers may omit the refresh token on refresh responses
        if not refreshed.refresh_token:
            refreshed.refresh_token = token.refresh_token
        if not refreshed.scopes:
            refreshed.scopes = list(token.scopes)

        self._persist(identity, refreshed)
        log_event("AUTH", f"[{identity}] Token refreshed and persisted (expiry: {refreshed.expiry})", "SUCCESS")
        return refreshed

    def _consent(self, identity: str, scopes: Set[str]) -> OAuthToken:
        """Interactive flow: authorization URL -> user -> code -> token exchange"""
        flow = self.flow_factory(
            self.client_config,
            scopes=sorted(scopes),
            redirect_uri=self.redirect_uri
        )

        # access_type='offline' ensures we get a refresh_token
        # prompt='consent' forces full consent screen every time
        authorization_url, _ = flow.authorization_url(
            access_type='offline',
            include_granted_scopes='true',
            prompt='consent'
        )

        log_event("AUTH", f"[{identity}] Requesting user consent for {len(scopes)} scope(s)", "PROGRESS")
        code = self.consent_prompt(authorization_url)
        if not code:
            log_event("AUTH", f"[{identity}] User declined consent", "ERROR")
            raise AuthError(AuthErrorKind.DENIED, "User declined the consent request")

        try:
            flow.fetch_token(code=code)
        except AccessDeniedError as e:
            raise AuthError(AuthErrorKind.DENIED, f"Consent denied: {e}") from e
        except InvalidGrantError as e:
            raise AuthError(AuthErrorKind.INVALID_GRANT, f"Authorization code rejected: {e}") from e
        except OAuth2Error as e:
            raise AuthError(AuthErrorKind.DENIED, f"Code exchange refused: {e}") from e
        except requests.exceptions.RequestException as e:
            log_event("AUTH", f"[{identity}] Token endpoint unreachable: {e}", "ERROR")
            raise AuthError(AuthErrorKind.NETWORK_FAILURE, f"Token endpoint unreachable: {e}") from e

        credentials = flow.credentials
        token = OAuthToken.from_credentials(credentials)
        if not credentials.scopes:
            token.scopes = sorted(scopes)

        missing = scopes - set(token.scopes)
        if missing:
            raise AuthError(
                AuthErrorKind.DENIED,
                f"Required scopes were not granted: {', '.join(sorted(missing))}. "
                "Please approve all requested permissions during login."
            )

        self._persist(identity, token)
        log_event("AUTH", f"[{identity}] Consent granted, credential stored", "SUCCESS")
        return token

    # ============================================================
    # PERSISTENCE / REVOCATION
    # ============================================================

    def _persist(self, identity: str, token: OAuthToken) -> None:
        self.token_store.save(identity, token)
        self._cache[identity] = token

    def _discard(self, identity: str) -> None:
        self._cache.pop(identity, None)
        self.token_store.delete(identity)

    def revoke(self, identity: str, timeout: float = 10.0) -> None:
        """
        Revoke the credential at the provider and delete it locally.
        A 400 from the provider means the token was already invalid.
        """
        with self._lock_for(identity):
            token = self._cache.get(identity) or self.token_store.load(identity)
            if token is None:
                log_event("AUTH", f"[{identity}] Nothing to revoke")
                return

            try:
                resp = requests.post(
                    REVOKE_URL,
                    params={'token': token.refresh_token or token.access_token},
                    headers={'content-type': 'application/x-www-form-urlencoded'},
                    timeout=timeout,
                )
            except requests.exceptions.RequestException as e:
                raise AuthError(AuthErrorKind.NETWORK_FAILURE, f"Revocation endpoint unreachable: {e}") from e

            if resp.status_code not in (200, 400):
                raise AuthError(
                    AuthErrorKind.NETWORK_FAILURE,
                    f"Revocation failed with HTTP {resp.status_code}"
                )

            self._discard(identity)
            log_event("AUTH", f"[{identity}] Credential revoked", "SUCCESS")
