from __future__ import annotations
from typing import Iterable

import requests

from tubelift.auth.authorizer import Authorizer


class AuthorizedTransport(requests.Session):
    """
    requests.Session that asks the Authorizer for a valid token before every
    request, so an access token is never sent past its expiry even during
    long chunked uploads.
    """

    def __init__(self, authorizer: Authorizer, scopes: Iterable[str], identity: str):
        super().__init__()
        self.authorizer = authorizer
        self.scopes = set(scopes)
        self.identity = identity

    def request(self, method, url, *args, headers=None, **kwargs):
        token = self.authorizer.authorize(self.scopes, self.identity)
        headers = dict(headers or {})
        headers["Authorization"] = f"Bearer {token.access_token}"
        return super().request(method, url, *args, headers=headers, **kwargs)
