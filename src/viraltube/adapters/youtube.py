"""
YouTube adapters – OAuth credential provider and resumable uploader
(YouTube Data API v3).
"""

import asyncio
import io
import logging
import os
import pickle
from typing import Any, Dict, Optional

from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from viraltube.compositor.resources import ResourceLoader
from viraltube.config import (
    YOUTUBE_CATEGORY_ID,
    YOUTUBE_CREDENTIALS_FILE,
    YOUTUBE_PRIVACY_STATUS,
    YOUTUBE_TOKEN_FILE,
)
from viraltube.domain.errors import CredentialError, PublishError
from viraltube.domain.models import MediaBlob, Script
from viraltube.ports.interfaces import ICredentialProvider, IPublisher, PercentCallback

logger = logging.getLogger(__name__)

# YouTube API scopes
SCOPES = ["https://www.googleapis.com/auth/youtube.upload"]

UPLOAD_CHUNK_SIZE = 4 * 1024 * 1024
CHUNK_RETRIES = 3


class YouTubeCredentialProvider(ICredentialProvider):
    """OAuth2 token kept in a pickle file; linking runs the installed-app flow."""

    def __init__(
        self,
        credentials_file: str = YOUTUBE_CREDENTIALS_FILE,
        token_file: str = YOUTUBE_TOKEN_FILE,
    ):
        self.credentials_file = credentials_file
        self.token_file = token_file
        self._credentials = None

    async def has_credential(self) -> bool:
        return await asyncio.to_thread(self._load) is not None

    async def get_credential(self) -> Optional[Any]:
        return await asyncio.to_thread(self._load)

    async def select_credential(self) -> None:
        await asyncio.to_thread(self._run_flow)

    async def clear(self) -> None:
        self._credentials = None
        if os.path.exists(self.token_file):
            os.remove(self.token_file)
            logger.info("Removed stored YouTube token %s", self.token_file)

    def _load(self):
        """Cached or stored credentials, refreshed if expired. None when not linked."""
        if self._credentials is None and os.path.exists(self.token_file):
            with open(self.token_file, "rb") as token:
                self._credentials = pickle.load(token)

        creds = self._credentials
        if creds is None:
            return None
        if creds.valid:
            return creds
        if creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except Exception as exc:
                logger.warning("YouTube token refresh failed: %s", exc)
                self._credentials = None
                return None
            self._save(creds)
            return creds
        return None

    def _run_flow(self) -> None:
        if not os.path.exists(self.credentials_file):
            raise CredentialError(
                f"Credentials file not found: {self.credentials_file}",
                {"hint": "Download OAuth2 client credentials from Google Cloud Console"},
            )
        flow = InstalledAppFlow.from_client_secrets_file(self.credentials_file, SCOPES)
        creds = flow.run_local_server(port=0)
        self._save(creds)
        logger.info("YouTube account linked")

    def _save(self, creds) -> None:
        self._credentials = creds
        with open(self.token_file, "wb") as token:
            pickle.dump(creds, token)


class YouTubePublisher(IPublisher):
    """Uploads the in-memory render and sets the selected thumbnail."""

    def __init__(
        self,
        category_id: str = YOUTUBE_CATEGORY_ID,
        privacy_status: str = YOUTUBE_PRIVACY_STATUS,
        loader: Optional[ResourceLoader] = None,
        service_factory=None,
    ):
        self.category_id = category_id
        self.privacy_status = privacy_status
        self._loader = loader or ResourceLoader()
        self._build = service_factory or (lambda creds: build("youtube", "v3", credentials=creds, cache_discovery=False))

    async def upload(
        self,
        video: MediaBlob,
        thumbnail_ref: Optional[str],
        script: Script,
        credential: Any,
        on_progress: Optional[PercentCallback] = None,
    ) -> str:
        loop = asyncio.get_running_loop()

        def report(percent: int) -> None:
            if on_progress is not None:
                loop.call_soon_threadsafe(on_progress, percent)

        return await asyncio.to_thread(self._upload, video, thumbnail_ref, script, credential, report)

    def video_body(self, script: Script) -> Dict[str, Any]:
        return {
            "snippet": {
                "title": script.title[:100],
                "description": script.description,
                "tags": list(script.tags),
                "categoryId": self.category_id,
            },
            "status": {
                "privacyStatus": self.privacy_status,
                "selfDeclaredMadeForKids": False,
            },
        }

    def _upload(self, video, thumbnail_ref, script, credential, report) -> str:
        body = self.video_body(script)
        try:
            youtube = self._build(credential)
            media = MediaIoBaseUpload(
                io.BytesIO(video.data),
                mimetype=video.mime_type,
                chunksize=UPLOAD_CHUNK_SIZE,
                resumable=True,
            )
            logger.info("Uploading video to YouTube: %s (%s)", script.title, self.privacy_status)
            request = youtube.videos().insert(part=",".join(body.keys()), body=body, media_body=media)
            response = self._resumable_upload(request, report)
        except HttpError as exc:
            raise PublishError(f"{exc.resp.status} Upload failed: {exc}") from exc

        video_id = response.get("id") if response else None
        if not video_id:
            raise PublishError(f"Unexpected upload response: {response}")
        report(100)
        logger.info("Video uploaded: https://www.youtube.com/watch?v=%s", video_id)

        if thumbnail_ref:
            self._set_thumbnail(youtube, video_id, thumbnail_ref)
        return video_id

    def _resumable_upload(self, request, report) -> Optional[Dict[str, Any]]:
        response = None
        retry = 0
        while response is None:
            try:
                status, response = request.next_chunk()
            except HttpError as exc:
                if exc.resp.status not in (500, 502, 503, 504) or retry >= CHUNK_RETRIES:
                    raise
                retry += 1
                logger.warning("Upload error (retry %d/%d): %s", retry, CHUNK_RETRIES, exc)
                continue
            if status is not None:
                report(int(status.progress() * 100))
        return response

    def _set_thumbnail(self, youtube, video_id: str, thumbnail_ref: str) -> None:
        try:
            data = self._loader.read_bytes(thumbnail_ref, timeout=30)
            youtube.thumbnails().set(
                videoId=video_id,
                media_body=MediaIoBaseUpload(io.BytesIO(data), mimetype="image/png"),
            ).execute()
            logger.info("Thumbnail uploaded")
        except Exception as exc:
            logger.warning("Could not upload thumbnail: %s", exc)
