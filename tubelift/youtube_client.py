from __future__ import annotations
"""
YouTube Data API Client
Uploads videos and thumbnails through the resumable engine and lists the
authorized channel's uploads.
"""

import mimetypes
from typing import Any, Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from tubelift.auth.authorizer import Authorizer
from tubelift.auth.transport import AuthorizedTransport
from tubelift.config.upload_defaults import (
    THUMBNAIL_UPLOAD_URL,
    VIDEO_UPLOAD_URL,
    YOUTUBE_READONLY_SCOPE,
    YOUTUBE_UPLOAD_SCOPE,
)
from tubelift.settings import settings
from tubelift.upload.media import MediaSource
from tubelift.upload.progress import ProgressListener, console_progress
from tubelift.upload.retry_policy import RetryPolicy
from tubelift.upload.session import ResumableUpload
from tubelift.utils.http import with_query
from tubelift.utils.log import log_event

DEFAULT_VIDEO_TYPE = "video/*"
DEFAULT_IMAGE_TYPE = "image/png"


class YouTubeClient:
    """Client for the YouTube Data API for a specific identity"""

    def __init__(
        self,
        authorizer: Authorizer,
        identity: str,
        listener: Optional[ProgressListener] = console_progress,
        retry_policy: Optional[RetryPolicy] = None,
        chunk_size: Optional[int] = None,
    ):
        self.authorizer = authorizer
        self.identity = identity
        self.listener = listener
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.chunk_size = chunk_size or settings.UPLOAD_CHUNK_SIZE

    def _transport(self, *scopes: str) -> AuthorizedTransport:
        return AuthorizedTransport(self.authorizer, scopes, self.identity)

    def _init_service(self, *scopes: str):
        # Authorize on every call so the discovery client never holds a stale token
        token = self.authorizer.authorize(scopes, self.identity)
        return build("youtube", "v3", credentials=token.to_credentials(), cache_discovery=False)

    # ============================================================
    # UPLOADS
    # ============================================================

    def create_upload(
        self,
        upload_url: str,
        media: MediaSource,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        direct: bool = False,
    ) -> ResumableUpload:
        """Build an upload without starting it, for callers that cancel or resume"""
        return ResumableUpload(
            self._transport(YOUTUBE_UPLOAD_SCOPE),
            upload_url,
            media,
            content_type,
            metadata=metadata,
            chunk_size=self.chunk_size,
            retry_policy=self.retry_policy,
            listener=self.listener,
            timeout=settings.UPLOAD_TIMEOUT_SECONDS,
            direct=direct,
        )

    def resume_upload(self, session_uri: str, media: MediaSource, content_type: str) -> ResumableUpload:
        """Reattach to a session URI from an earlier run and reconcile with the server"""
        return ResumableUpload.resume(
            self._transport(YOUTUBE_UPLOAD_SCOPE),
            session_uri,
            media,
            content_type,
            chunk_size=self.chunk_size,
            retry_policy=self.retry_policy,
            listener=self.listener,
            timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        )

    def upload_video(
        self,
        path: str,
        title: str,
        description: str = "",
        tags: Optional[List[str]] = None,
        privacy_status: str = "public",
        category_id: Optional[str] = None,
        direct: bool = False,
    ) -> Dict[str, Any]:
        """
        Upload a video file with its snippet and status metadata.

        Returns:
            The video resource returned by the API
        """
        snippet: Dict[str, Any] = {
            "title": title,
            "description": description,
            "tags": tags or [],
        }
        if category_id:
            snippet["categoryId"] = category_id
        metadata = {"snippet": snippet, "status": {"privacyStatus": privacy_status}}

        content_type = mimetypes.guess_type(path)[0] or DEFAULT_VIDEO_TYPE
        url = with_query(VIDEO_UPLOAD_URL, part="snippet,statistics,status")

        media = MediaSource.from_path(path)
        try:
            log_event("YOUTUBE", f"[{self.identity}] Uploading: {path}", "PROGRESS")
            video = self.create_upload(url, media, content_type, metadata=metadata, direct=direct).run()
        finally:
            media.close()

        video = video or {}
        log_event(
            "YOUTUBE",
            f"[{self.identity}] Uploaded video id={video.get('id')} "
            f"title={video.get('snippet', {}).get('title')!r} "
            f"privacy={video.get('status', {}).get('privacyStatus')}",
            "SUCCESS"
        )
        return video

    def set_thumbnail(self, video_id: str, image_path: str) -> Dict[str, Any]:
        """
        Upload an image as the custom thumbnail of a video.

        Returns:
            The thumbnails.set response
        """
        content_type = mimetypes.guess_type(image_path)[0] or DEFAULT_IMAGE_TYPE
        url = with_query(THUMBNAIL_UPLOAD_URL, videoId=video_id)

        media = MediaSource.from_path(image_path)
        try:
            log_event("YOUTUBE", f"[{self.identity}] Uploading thumbnail {image_path} for {video_id}", "PROGRESS")
            response = self.create_upload(url, media, content_type).run() or {}
        finally:
            media.close()

        items = response.get("items") or [{}]
        default_url = items[0].get("default", {}).get("url")
        log_event("YOUTUBE", f"[{self.identity}] Thumbnail set: {default_url}", "SUCCESS")
        return response

    # ============================================================
    # LISTING
    # ============================================================

    def fetch_my_uploads(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List videos in the authorized channel's uploads playlist.

        Returns:
            Dicts with video_id, title and published_at, newest first
        """
        service = self._init_service(YOUTUBE_READONLY_SCOPE)

        try:
            channels = service.channels().list(part="contentDetails", mine=True).execute()
            items = channels.get("items", [])
            if not items:
                log_event("YOUTUBE", f"[{self.identity}] No channel found for this account", "WARNING")
                return []
            playlist_id = items[0]["contentDetails"]["relatedPlaylists"]["uploads"]

            uploads: List[Dict[str, Any]] = []
            page_token = None
            while True:
                page = service.playlistItems().list(
                    part="snippet,contentDetails",
                    playlistId=playlist_id,
                    maxResults=50,
                    pageToken=page_token
                ).execute()

                for item in page.get("items", []):
                    uploads.append({
                        "video_id": item["contentDetails"]["videoId"],
                        "title": item["snippet"].get("title"),
                        "published_at": item["snippet"].get("publishedAt"),
                    })
                    if limit is not None and len(uploads) >= limit:
                        break

                page_token = page.get("nextPageToken")
                if not page_token or (limit is not None and len(uploads) >= limit):
                    break

            log_event("YOUTUBE", f"[{self.identity}] Fetched {len(uploads)} uploads")
            return uploads

        except HttpError as e:
            log_event("YOUTUBE", f"[{self.identity}] Listing uploads failed: {e}", "ERROR")
            raise
