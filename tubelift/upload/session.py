from __future__ import annotations
"""
Resumable Upload Session
Drives one logical transfer: initiation, chunk loop, retries, resumption.

PROTOCOL:
  initiate  POST <upload_url>?uploadType=resumable    -> 200 + Location: <session_uri>
  chunk     PUT  <session_uri>  Content-Range: bytes a-b/total
            -> 308 + Range: bytes=0-n   (more expected)
            -> 200/201 + resource JSON  (complete)
  status    PUT  <session_uri>  Content-Range: bytes */total  (empty body)
  direct    POST <upload_url>?uploadType=media|multipart  (whole payload)
"""

import json
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from tubelift.config.upload_defaults import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT_SECONDS, RESUME_INCOMPLETE
from tubelift.errors import (
    AuthError,
    ErrorKind,
    InitiationError,
    StorageError,
    UploadError,
    UploadErrorKind,
)
from tubelift.upload.chunk_planner import ChunkPlanner
from tubelift.upload.media import MediaSource
from tubelift.upload.models import ChunkRange, UploadSession, UploadState, can_transition
from tubelift.upload.progress import ProgressListener
from tubelift.upload.retry_policy import RetryPolicy, classify_exception, classify_status
from tubelift.utils.http import (
    content_range,
    multipart_related,
    parse_received_bytes,
    status_query_range,
    with_query,
)
from tubelift.utils.log import log_event

_SUCCESS = (200, 201)


class ResumableUpload:
    """
    Orchestrates one upload against a resumable endpoint.

    `transport` is any requests.Session-like object (normally an
    AuthorizedTransport). The instance is single-threaded; only cancel()
    may be called from another thread.
    """

    def __init__(
        self,
        transport: requests.Session,
        upload_url: Optional[str],
        media: MediaSource,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        listener: Optional[ProgressListener] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        direct: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.upload_url = upload_url
        self.media = media
        self.metadata = metadata
        self.retry_policy = retry_policy or RetryPolicy()
        self.listener = listener
        self.timeout = timeout
        self.direct = direct
        self.sleep = sleep

        self.planner = ChunkPlanner()
        self.session = UploadSession(
            chunk_size=chunk_size,
            content_type=content_type,
            total_size=media.length(),
        )
        self.response: Optional[Dict[str, Any]] = None
        self.error: Optional[BaseException] = None
        self._cancelled = threading.Event()

    @classmethod
    def resume(
        cls,
        transport: requests.Session,
        session_uri: str,
        media: MediaSource,
        content_type: str,
        bytes_confirmed: Optional[int] = None,
        **kwargs,
    ) -> "ResumableUpload":
        """
        Rebuild an upload from a session URI obtained by an earlier process.

        The server's received count replaces any locally remembered
        `bytes_confirmed`, which is only compared for logging.
        """
        upload = cls(transport, kwargs.pop("upload_url", None), media, content_type, **kwargs)
        upload.session.session_uri = session_uri
        upload._set_state(UploadState.INITIATION_COMPLETE)
        upload.reconcile()
        if bytes_confirmed is not None and bytes_confirmed != upload.session.bytes_confirmed:
            log_event(
                "UPLOAD",
                f"Local offset {bytes_confirmed} differs from server offset "
                f"{upload.session.bytes_confirmed}; using server value",
                "WARNING"
            )
        return upload

    # ============================================================
    # STATE / NOTIFICATION
    # ============================================================

    @property
    def state(self) -> UploadState:
        return self.session.state

    def _set_state(self, state: UploadState) -> None:
        if state == self.session.state:
            return
        if not can_transition(self.session.state, state):
            raise RuntimeError(f"Illegal upload state transition {self.session.state.name} -> {state.name}")
        self.session.state = state
        self._notify()

    def _notify(self) -> None:
        if self.listener is not None:
            self.listener(self.session.snapshot())

    def _fail(self, error: BaseException) -> None:
        self.error = error
        if self.session.state != UploadState.FAILED:
            self._set_state(UploadState.FAILED)
        log_event("UPLOAD", f"Upload failed: {error}", "ERROR")

    def cancel(self) -> None:
        """Stop before the next chunk; the chunk in flight is not interrupted"""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # ============================================================
    # INITIATION
    # ============================================================

    def initiate(self) -> str:
        """
        Open a resumable session and return its URI.
        From FAILED this starts over with a fresh session (seekable media only).

        Raises:
            InitiationError: endpoint refused or retries ran out
            AuthError: no valid credential for the transport, propagated unchanged
        """
        if self.direct:
            raise RuntimeError("Direct uploads have no initiation step")
        if self.session.state == UploadState.FAILED:
            self._restart()
        elif self.session.state != UploadState.NOT_STARTED:
            raise RuntimeError(f"Upload already initiated (state: {self.session.state.name})")
        if not self.upload_url:
            raise RuntimeError("No upload URL configured for initiation")

        self._set_state(UploadState.INITIATION_STARTED)

        headers = {"X-Upload-Content-Type": self.session.content_type}
        if self.session.total_size is not None:
            headers["X-Upload-Content-Length"] = str(self.session.total_size)
        body = b""
        if self.metadata is not None:
            headers["Content-Type"] = "application/json; charset=UTF-8"
            body = json.dumps(self.metadata).encode("utf-8")
        url = with_query(self.upload_url, uploadType="resumable")

        def attempt_once(attempt: int) -> str:
            resp = self._send("POST", url, headers, body)
            if resp.status_code not in _SUCCESS:
                raise self._status_error(resp, "initiation")
            location = resp.headers.get("Location")
            if not location:
                raise UploadError(UploadErrorKind.PERMANENT, "Initiation response carried no Location header")
            return location

        try:
            session_uri = self._with_retries(attempt_once, "initiation")
        except AuthError as e:
            self._fail(e)
            raise
        except UploadError as e:
            error = InitiationError(f"Could not open resumable session: {e}", cause=e)
            self._fail(error)
            raise error from e

        self.session.session_uri = session_uri
        self._set_state(UploadState.INITIATION_COMPLETE)
        log_event("UPLOAD", f"Resumable session opened ({self._size_label()})", "SUCCESS")
        return session_uri

    def _restart(self) -> None:
        self.media.rewind()
        self.session = UploadSession(
            chunk_size=self.session.chunk_size,
            content_type=self.session.content_type,
            total_size=self.media.length(),
        )
        self.response = None
        self.error = None
        self._cancelled.clear()
        log_event("UPLOAD", "Restarting upload with a fresh session", "WARNING")

    # ============================================================
    # CHUNK LOOP
    # ============================================================

    def run(self) -> Optional[Dict[str, Any]]:
        """
        Transfer the payload and return the final resource representation.
        Returns None if cancel() stopped the loop; the session stays resumable
        and calling run() again on this instance continues from the confirmed
        offset.

        Raises:
            UploadError / InitiationError / AuthError / StorageError; a FAILED
            upload re-raises its error until initiate() is called again.
        """
        if self.session.state == UploadState.FAILED:
            raise self.error
        if self.session.state == UploadState.MEDIA_COMPLETE:
            return self.response
        if self.direct:
            return self._run_direct()
        if self.session.state == UploadState.NOT_STARTED:
            self.initiate()

        self._set_state(UploadState.MEDIA_IN_PROGRESS)

        while self.session.state != UploadState.MEDIA_COMPLETE:
            if self.cancelled:
                self._cancelled.clear()
                log_event("UPLOAD", f"Cancelled at offset {self.session.bytes_confirmed}", "WARNING")
                return None

            chunk = self.planner.next_range(self.session)
            if chunk is None:
                self._set_state(UploadState.MEDIA_COMPLETE)
                break

            try:
                self._transfer_chunk(chunk)
            except (UploadError, AuthError, StorageError) as e:
                self._fail(e)
                raise

            if self.session.state != UploadState.MEDIA_COMPLETE:
                self._notify()

        log_event("UPLOAD", f"Upload complete ({self.session.bytes_confirmed} bytes)", "SUCCESS")
        return self.response

    def _transfer_chunk(self, chunk: ChunkRange) -> None:
        def attempt_once(attempt: int) -> None:
            if attempt == 0:
                self._put_chunk(chunk)
                return
            # After a failure the server's count is the only reliable offset
            self._query_status()
            if self.session.state == UploadState.MEDIA_COMPLETE:
                return
            retry_chunk = self.planner.next_range(self.session)
            if retry_chunk is not None:
                self._put_chunk(retry_chunk)

        self._with_retries(attempt_once, f"chunk at offset {chunk.offset}")

    def _put_chunk(self, chunk: ChunkRange) -> None:
        data = self.media.read_range(chunk.offset, chunk.length)

        if len(data) < chunk.length:
            if self.session.total_size is None:
                # Short read from a streaming source: this is the last chunk
                self.session.total_size = chunk.offset + len(data)
            else:
                raise StorageError(
                    f"{self.media.name} ended at {chunk.offset + len(data)} bytes, "
                    f"declared size is {self.session.total_size}"
                )

        headers = {
            "Content-Range": content_range(chunk.offset, len(data), self.session.total_size),
            "Content-Type": self.session.content_type,
        }
        resp = self._send("PUT", self.session.session_uri, headers, data)
        self._apply_ack(resp, chunk.offset + len(data))

    def _apply_ack(self, resp: requests.Response, sent_end: int) -> None:
        if resp.status_code in _SUCCESS:
            self._complete(resp)
            return
        if resp.status_code != RESUME_INCOMPLETE:
            raise self._status_error(resp, "chunk")

        received = self._received_bytes(resp)
        if received < self.session.bytes_confirmed or received > sent_end:
            raise UploadError(
                UploadErrorKind.PERMANENT,
                f"Server acknowledged {received} bytes, expected between "
                f"{self.session.bytes_confirmed} and {sent_end}"
            )
        self.session.advance_to(received)

    def _complete(self, resp: requests.Response) -> None:
        if self.session.total_size is None:
            self.session.total_size = self.session.bytes_confirmed
        self.session.advance_to(self.session.total_size)
        self.response = _json_body(resp)
        self._set_state(UploadState.MEDIA_COMPLETE)

    # ============================================================
    # RESUMPTION
    # ============================================================

    def reconcile(self) -> int:
        """
        Ask the server how many bytes it holds and adopt that count.
        Returns the reconciled offset.
        """
        if not self.session.session_uri:
            raise RuntimeError("No session URI to query")
        try:
            self._with_retries(lambda attempt: self._query_status(), "status query")
        except (UploadError, AuthError) as e:
            self._fail(e)
            raise
        log_event("UPLOAD", f"Server holds {self.session.bytes_confirmed} bytes ({self._size_label()})")
        return self.session.bytes_confirmed

    def _query_status(self) -> None:
        headers = {"Content-Range": status_query_range(self.session.total_size)}
        resp = self._send("PUT", self.session.session_uri, headers, b"")
        if resp.status_code in _SUCCESS:
            self._complete(resp)
            return
        if resp.status_code != RESUME_INCOMPLETE:
            raise self._status_error(resp, "status query")

        received = self._received_bytes(resp)
        if received < self.session.bytes_confirmed:
            raise UploadError(
                UploadErrorKind.PERMANENT,
                f"Server lost confirmed bytes ({received} < {self.session.bytes_confirmed})"
            )
        self.session.advance_to(received)

    # ============================================================
    # DIRECT MODE
    # ============================================================

    def _run_direct(self) -> Optional[Dict[str, Any]]:
        try:
            data = self.media.read_all()
        except StorageError as e:
            self._fail(e)
            raise
        self.session.total_size = len(data)

        if self.metadata is not None:
            body, body_type = multipart_related(self.metadata, data, self.session.content_type)
            url = with_query(self.upload_url, uploadType="multipart")
        else:
            body, body_type = data, self.session.content_type
            url = with_query(self.upload_url, uploadType="media")
        headers = {"Content-Type": body_type}

        def attempt_once(attempt: int) -> None:
            resp = self._send("POST", url, headers, body)
            if resp.status_code not in _SUCCESS:
                raise self._status_error(resp, "direct upload")
            self._complete(resp)

        try:
            self._with_retries(attempt_once, "direct upload")
        except (UploadError, AuthError) as e:
            self._fail(e)
            raise
        log_event("UPLOAD", f"Direct upload complete ({len(data)} bytes)", "SUCCESS")
        return self.response

    # ============================================================
    # HTTP / RETRIES
    # ============================================================

    def _send(self, method: str, url: str, headers: Dict[str, str], data: bytes) -> requests.Response:
        try:
            return self.transport.request(method, url, headers=headers, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            error_kind = classify_exception(e)
            if error_kind is None:
                raise UploadError(UploadErrorKind.PERMANENT, f"{method} failed: {e}", cause=e) from e
            raise UploadError.classified(error_kind, f"{method} failed: {e}", cause=e) from e

    def _status_error(self, resp: requests.Response, what: str) -> UploadError:
        error_kind = classify_status(resp.status_code, resp.text)
        detail = (resp.text or "")[:200]
        return UploadError.classified(
            error_kind,
            f"{what} returned HTTP {resp.status_code}: {detail}",
            status=resp.status_code,
        )

    def _received_bytes(self, resp: requests.Response) -> int:
        try:
            return parse_received_bytes(resp.headers.get("Range"))
        except ValueError as e:
            raise UploadError(UploadErrorKind.PERMANENT, str(e), cause=e) from e

    def _with_retries(self, operation: Callable[[int], Any], what: str) -> Any:
        """
        Run operation(attempt) until it succeeds or the policy aborts.
        The attempt counter is local, so every chunk gets a fresh budget.
        """
        attempt = 0
        while True:
            try:
                return operation(attempt)
            except UploadError as e:
                attempt += 1
                decision = self.retry_policy.should_retry(attempt, e.error_kind)
                if not decision.retry:
                    if e.kind == UploadErrorKind.TRANSIENT:
                        raise UploadError(
                            UploadErrorKind.PERMANENT,
                            f"{what} gave up after {attempt} attempt(s): {e}",
                            cause=e,
                            status=e.status,
                            error_kind=e.error_kind,
                        ) from e
                    raise
                log_event(
                    "UPLOAD",
                    f"{what} failed ({e.error_kind.value}), retry {attempt}/{self.retry_policy.max_attempts - 1} "
                    f"in {decision.delay:.1f}s",
                    "WARNING"
                )
                self.sleep(decision.delay)

    def _size_label(self) -> str:
        total = "unknown" if self.session.total_size is None else str(self.session.total_size)
        return f"{self.session.bytes_confirmed}/{total} bytes"


def _json_body(resp: requests.Response) -> Optional[Dict[str, Any]]:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None
