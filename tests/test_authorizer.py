"""
Authorizer tests: cached/stored credentials, refresh, consent and revocation.
google-auth is exercised for real; only the network-facing calls are patched.
"""

import threading
import time
from datetime import timedelta
from unittest import mock

import pytest
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from oauthlib.oauth2.rfc6749.errors import AccessDeniedError, InvalidGrantError

from tubelift.auth.authorizer import Authorizer, extract_authorization_code
from tubelift.auth.token_model import OAuthToken
from tubelift.errors import AuthError, AuthErrorKind
from tubelift.utils.clock import utcnow

from tests.fakes import FakeFlow

UPLOAD = "https://www.googleapis.com/auth/youtube.upload"
READONLY = "https://www.googleapis.com/auth/youtube.readonly"
CLIENT_CONFIG = {
    "installed": {
        "client_id": "client-id",
        "client_secret": "client-secret",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
}


def make_token(access_token="access-1", expires_in=3600, scopes=(UPLOAD,), refresh_token="refresh-1"):
    return OAuthToken(
        access_token=access_token,
        refresh_token=refresh_token,
        token_uri="https://oauth2.googleapis.com/token",
        client_id="client-id",
        client_secret="client-secret",
        scopes=list(scopes),
        expiry=utcnow() + timedelta(seconds=expires_in),
    )


def granted_credentials(scopes):
    return Credentials(
        token="consented-access",
        refresh_token="consented-refresh",
        token_uri="https://oauth2.googleapis.com/token",
        client_id="client-id",
        client_secret="client-secret",
        scopes=list(scopes),
        expiry=utcnow() + timedelta(hours=1),
    )


class FlowFactory:
    """Hands out FakeFlows and remembers them"""

    def __init__(self, error=None, credentials_factory=granted_credentials):
        self.error = error
        self.credentials_factory = credentials_factory
        self.flows = []

    def __call__(self, client_config, scopes, redirect_uri):
        flow = FakeFlow(scopes, self.credentials_factory, error=self.error)
        self.flows.append(flow)
        return flow


def fake_refresh(self, request):
    self.token = "refreshed-access"
    self.expiry = utcnow() + timedelta(hours=1)


@pytest.fixture
def flows():
    return FlowFactory()


@pytest.fixture
def prompts():
    return []


@pytest.fixture
def authorizer(token_store, flows, prompts):
    def consent(url):
        prompts.append(url)
        return "auth-code"

    return Authorizer(
        token_store,
        client_config=CLIENT_CONFIG,
        consent_prompt=consent,
        flow_factory=flows,
        request=mock.MagicMock(),
        redirect_uri="http://localhost:8080/",
        expiry_skew_seconds=60,
    )


# ---------------------------------------------------------------------------
# Stored credentials
# ---------------------------------------------------------------------------

def test_valid_stored_token_is_returned_without_refresh_or_consent(authorizer, token_store, prompts):
    token_store.save("uploadvideo", make_token())

    with mock.patch.object(Credentials, "refresh", autospec=True) as refresh:
        token = authorizer.authorize({UPLOAD}, "uploadvideo")

    assert token.access_token == "access-1"
    refresh.assert_not_called()
    assert prompts == []


def test_expired_token_is_refreshed_once_and_persisted(authorizer, token_store, prompts):
    token_store.save("uploadvideo", make_token(expires_in=-10))

    with mock.patch.object(Credentials, "refresh", autospec=True, side_effect=fake_refresh) as refresh:
        token = authorizer.authorize({UPLOAD}, "uploadvideo")
        again = authorizer.authorize({UPLOAD}, "uploadvideo")

    assert refresh.call_count == 1
    assert token.access_token == "refreshed-access"
    assert token.expiry > utcnow()
    assert again is token
    assert prompts == []

    stored = token_store.load("uploadvideo")
    assert stored.access_token == "refreshed-access"
    assert stored.refresh_token == "refresh-1"
    assert stored.scopes == [UPLOAD]


def test_token_inside_expiry_skew_is_refreshed(authorizer, token_store):
    token_store.save("uploadvideo", make_token(expires_in=30))

    with mock.patch.object(Credentials, "refresh", autospec=True, side_effect=fake_refresh) as refresh:
        authorizer.authorize({UPLOAD}, "uploadvideo")

    assert refresh.call_count == 1


def test_rejected_refresh_token_falls_back_to_consent(authorizer, token_store, flows, prompts):
    token_store.save("uploadvideo", make_token(expires_in=-10))
    rejected = RefreshError("invalid_grant: Token has been expired or revoked.")

    with mock.patch.object(Credentials, "refresh", autospec=True, side_effect=rejected):
        token = authorizer.authorize({UPLOAD}, "uploadvideo")

    assert token.access_token == "consented-access"
    assert len(prompts) == 1
    assert flows.flows[0].fetched_codes == ["auth-code"]
    assert token_store.load("uploadvideo").refresh_token == "consented-refresh"


def test_unreachable_token_endpoint_is_network_failure(authorizer, token_store, prompts):
    token_store.save("uploadvideo", make_token(expires_in=-10))

    with mock.patch.object(Credentials, "refresh", autospec=True, side_effect=TransportError("dns failure")):
        with pytest.raises(AuthError) as excinfo:
            authorizer.authorize({UPLOAD}, "uploadvideo")

    assert excinfo.value.kind == AuthErrorKind.NETWORK_FAILURE
    assert prompts == []
    # stored credential is kept for the next attempt
    assert token_store.load("uploadvideo").access_token == "access-1"


def test_concurrent_callers_refresh_exactly_once(authorizer, token_store):
    token_store.save("uploadvideo", make_token(expires_in=-10))
    results = []

    def slow_refresh(self, request):
        time.sleep(0.05)
        fake_refresh(self, request)

    with mock.patch.object(Credentials, "refresh", autospec=True, side_effect=slow_refresh) as refresh:
        threads = [
            threading.Thread(target=lambda: results.append(authorizer.authorize({UPLOAD}, "uploadvideo")))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert refresh.call_count == 1
    assert len(results) == 8
    assert {t.access_token for t in results} == {"refreshed-access"}


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------

def test_first_use_runs_consent_and_stores_token(authorizer, token_store, flows, prompts):
    token = authorizer.authorize({UPLOAD}, "uploadvideo")

    assert token.access_token == "consented-access"
    assert token.scopes == [UPLOAD]
    assert prompts == ["https://accounts.example.com/o/oauth2/auth?client_id=test"]
    flow = flows.flows[0]
    assert flow.scopes == [UPLOAD]
    assert flow.authorization_kwargs["access_type"] == "offline"
    assert token_store.load("uploadvideo").access_token == "consented-access"


def test_uncovered_scopes_request_union(authorizer, token_store, flows):
    token_store.save("uploadvideo", make_token(scopes=(READONLY,)))

    token = authorizer.authorize({UPLOAD}, "uploadvideo")

    assert flows.flows[0].scopes == sorted([READONLY, UPLOAD])
    assert token.covers({UPLOAD, READONLY})


def test_declined_consent_is_denied(token_store, flows):
    authorizer = Authorizer(token_store, client_config=CLIENT_CONFIG, consent_prompt=lambda url: None,
                            flow_factory=flows, request=mock.MagicMock())

    with pytest.raises(AuthError) as excinfo:
        authorizer.authorize({UPLOAD}, "uploadvideo")

    assert excinfo.value.kind == AuthErrorKind.DENIED
    assert token_store.load("uploadvideo") is None


@pytest.mark.parametrize("error,kind", [
    (AccessDeniedError(), AuthErrorKind.DENIED),
    (InvalidGrantError(), AuthErrorKind.INVALID_GRANT),
    (requests.exceptions.ConnectionError("offline"), AuthErrorKind.NETWORK_FAILURE),
])
def test_code_exchange_failures(token_store, error, kind):
    authorizer = Authorizer(token_store, client_config=CLIENT_CONFIG, consent_prompt=lambda url: "code",
                            flow_factory=FlowFactory(error=error), request=mock.MagicMock())

    with pytest.raises(AuthError) as excinfo:
        authorizer.authorize({UPLOAD}, "uploadvideo")

    assert excinfo.value.kind == kind


def test_partially_granted_scopes_are_denied(token_store):
    flows = FlowFactory(credentials_factory=lambda scopes: granted_credentials([READONLY]))
    authorizer = Authorizer(token_store, client_config=CLIENT_CONFIG, consent_prompt=lambda url: "code",
                            flow_factory=flows, request=mock.MagicMock())

    with pytest.raises(AuthError) as excinfo:
        authorizer.authorize({UPLOAD}, "uploadvideo")

    assert excinfo.value.kind == AuthErrorKind.DENIED
    assert token_store.load("uploadvideo") is None


@pytest.mark.parametrize("answer,code", [
    ("", None),
    ("4/0AbCdEf", "4/0AbCdEf"),
    ("http://localhost:8080/?state=s&code=4/xyz&scope=a", "4/xyz"),
    ("http://localhost:8080/?error=access_denied&state=s", None),
    ("http://localhost:8080/?state=s", None),
])
def test_extract_authorization_code(answer, code):
    assert extract_authorization_code(answer) == code


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------

def test_revoke_deletes_credential(authorizer, token_store):
    token_store.save("uploadvideo", make_token())

    with mock.patch("tubelift.auth.authorizer.requests.post") as post:
        post.return_value = mock.MagicMock(status_code=200)
        authorizer.revoke("uploadvideo")

    assert post.call_args.kwargs["params"] == {"token": "refresh-1"}
    assert token_store.load("uploadvideo") is None


def test_revoke_failure_keeps_credential(authorizer, token_store):
    token_store.save("uploadvideo", make_token())

    with mock.patch("tubelift.auth.authorizer.requests.post") as post:
        post.return_value = mock.MagicMock(status_code=503)
        with pytest.raises(AuthError) as excinfo:
            authorizer.revoke("uploadvideo")

    assert excinfo.value.kind == AuthErrorKind.NETWORK_FAILURE
    assert token_store.load("uploadvideo") is not None


def test_revoke_without_credential_is_noop(authorizer):
    with mock.patch("tubelift.auth.authorizer.requests.post") as post:
        authorizer.revoke("nobody")

    post.assert_not_called()
