from __future__ import annotations
"""
tubelift - command line entrypoint

Usage:
    python -m tubelift.main authorize --identity uploadvideo
    python -m tubelift.main upload-video sample-video.mp4 --title "Test Upload"
    python -m tubelift.main upload-thumbnail VIDEO_ID thumb.png
    python -m tubelift.main my-uploads --limit 25
    python -m tubelift.main revoke --identity uploadvideo
"""

import argparse
import sys
from typing import List, Optional

from googleapiclient.errors import HttpError

from tubelift.auth.authorizer import Authorizer
from tubelift.auth.token_store import build_token_store
from tubelift.db_persistence import close_db_pool
from tubelift.config.upload_defaults import YOUTUBE_UPLOAD_SCOPE
from tubelift.errors import AuthError, AuthErrorKind, InitiationError, StorageError, UploadError
from tubelift.settings import settings
from tubelift.utils.log import log_event
from tubelift.youtube_client import YouTubeClient


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tubelift", description="Resumable YouTube uploads with OAuth2")
    parser.add_argument("--identity", default="tubelift", help="Key under which the credential is stored")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("authorize", help="Run the consent flow and store a credential")
    sub.add_parser("revoke", help="Revoke and delete the stored credential")

    video = sub.add_parser("upload-video", help="Upload a video file")
    video.add_argument("path")
    video.add_argument("--title", required=True)
    video.add_argument("--description", default="")
    video.add_argument("--tags", default="", help="Comma separated list of tags")
    video.add_argument("--privacy", default="public", choices=["public", "unlisted", "private"])
    video.add_argument("--category")
    video.add_argument("--direct", action="store_true", help="Single request, no resumability")

    thumb = sub.add_parser("upload-thumbnail", help="Set a video's custom thumbnail")
    thumb.add_argument("video_id")
    thumb.add_argument("path")

    uploads = sub.add_parser("my-uploads", help="List the channel's uploaded videos")
    uploads.add_argument("--limit", type=int)

    return parser.parse_args(argv)


def run_command(args: argparse.Namespace, authorizer: Authorizer) -> int:
    if args.command == "authorize":
        token = authorizer.authorize({YOUTUBE_UPLOAD_SCOPE}, args.identity)
        print(f"Authorized {args.identity} (expires {token.expiry} UTC)")
        return 0

    if args.command == "revoke":
        authorizer.revoke(args.identity)
        print(f"Revoked {args.identity}")
        return 0

    client = YouTubeClient(authorizer, args.identity)

    if args.command == "upload-video":
        tags = [tag.strip() for tag in args.tags.split(",") if tag.strip()]
        video = client.upload_video(
            args.path,
            title=args.title,
            description=args.description,
            tags=tags,
            privacy_status=args.privacy,
            category_id=args.category,
            direct=args.direct,
        )
        print("\n================== Returned Video ==================\n")
        print(f"  - Id: {video.get('id')}")
        print(f"  - Title: {video.get('snippet', {}).get('title')}")
        print(f"  - Tags: {video.get('snippet', {}).get('tags')}")
        print(f"  - Privacy Status: {video.get('status', {}).get('privacyStatus')}")
        return 0

    if args.command == "upload-thumbnail":
        response = client.set_thumbnail(args.video_id, args.path)
        items = response.get("items") or [{}]
        print("\n================== Uploaded Thumbnail ==================\n")
        print(f"  - Url: {items[0].get('default', {}).get('url')}")
        return 0

    if args.command == "my-uploads":
        for video in client.fetch_my_uploads(limit=args.limit):
            print(f"  {video['published_at']}  {video['video_id']}  {video['title']}")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        log_event("CLI", "GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not configured", "ERROR")
        return 1

    try:
        authorizer = Authorizer(build_token_store(settings))
        return run_command(args, authorizer)
    except AuthError as e:
        log_event("CLI", f"Authorization failed ({e.kind.value}): {e}", "ERROR")
        if e.kind == AuthErrorKind.INVALID_GRANT:
            log_event("CLI", f"Run 'tubelift --identity {args.identity} authorize' to sign in again", "WARNING")
        return 2
    except (InitiationError, UploadError) as e:
        log_event("CLI", f"Upload failed: {e}", "ERROR")
        return 3
    except (StorageError, HttpError) as e:
        log_event("CLI", f"{type(e).__name__}: {e}", "ERROR")
        return 1
    finally:
        close_db_pool()


if __name__ == '__main__':
    sys.exit(main())
