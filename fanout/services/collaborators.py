# fanout/services/collaborators.py
"""
Narrow contracts for the managed services the jobs talk to.

Each collaborator is injected by the caller. The concrete classes here
cover the ones this project can talk to directly: a local object store
and the Mailgun HTTP API.
"""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx

from fanout.errors import ExternalServiceError

log = logging.getLogger(__name__)


@dataclass
class UserRecord:
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    last_sign_in: Optional[datetime] = None
    custom_claims: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserPage:
    users: List[UserRecord]
    next_page_token: Optional[str] = None


@dataclass
class PushResult:
    token: str
    success: bool
    error_code: Optional[str] = None


@dataclass
class MailMessage:
    sender: str
    to: str
    subject: str
    html: str
    text: str = "Please enable HTML e-mail viewing."


@dataclass
class ClassifierResult:
    adult: Any
    violence: Any


class AuthProvider(Protocol):
    async def get_user(self, uid: str) -> UserRecord: ...

    async def get_user_by_email(self, email: str) -> UserRecord: ...

    async def list_users(self, page_size: int, page_token: Optional[str] = None) -> UserPage: ...

    async def set_custom_claims(self, uid: str, claims: Optional[Mapping[str, Any]]) -> None: ...

    async def delete_user(self, uid: str) -> None: ...


class ObjectStorage(Protocol):
    async def download(self, path: str, destination: str) -> str: ...

    async def get_metadata(self, path: str) -> Optional[Mapping[str, Any]]: ...

    async def upload(self, local_file: str, path: str, metadata: Optional[Mapping[str, Any]] = None) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...


class ImageClassifier(Protocol):
    async def classify(self, image_ref: str) -> ClassifierResult: ...


class PushSender(Protocol):
    async def send(self, tokens: Sequence[str], payload: Mapping[str, Any]) -> List[PushResult]: ...


class MailSender(Protocol):
    async def send(self, message: MailMessage) -> str: ...


class LocalObjectStorage:
    """
    Object storage on a local directory; object names map to relative paths.

    Custom metadata is kept as JSON beside the objects, under ``.metadata/``.
    """

    METADATA_DIR = ".metadata"

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root.resolve() not in target.parents and target != self.root.resolve():
            raise ExternalServiceError("storage", f"Path {path!r} escapes the storage root")
        return target

    def _metadata_file(self, path: str) -> Path:
        return self._resolve(f"{self.METADATA_DIR}/{path.lstrip('/')}.json")

    async def download(self, path: str, destination: str) -> str:
        source = self._resolve(path)
        if not source.is_file():
            raise ExternalServiceError("storage", f"No such object: {path}")
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, source, destination)
        return destination

    async def get_metadata(self, path: str) -> Optional[Dict[str, Any]]:
        if not self._resolve(path).is_file():
            raise ExternalServiceError("storage", f"No such object: {path}")
        meta_file = self._metadata_file(path)
        if not meta_file.is_file():
            return None
        return json.loads(await asyncio.to_thread(meta_file.read_text))

    async def upload(self, local_file: str, path: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, local_file, target)
        meta_file = self._metadata_file(path)
        if metadata is not None:
            meta_file.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(meta_file.write_text, json.dumps(dict(metadata)))
        elif meta_file.is_file():
            meta_file.unlink()

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise ExternalServiceError("storage", f"No such object: {path}")
        target.unlink()
        self._metadata_file(path).unlink(missing_ok=True)

    async def delete_prefix(self, prefix: str) -> int:
        base = self._resolve(prefix)
        if base.is_dir():
            count = sum(1 for p in base.rglob("*") if p.is_file())
            await asyncio.to_thread(shutil.rmtree, base)
            meta_base = self._resolve(f"{self.METADATA_DIR}/{prefix.lstrip('/')}")
            if meta_base.is_dir():
                await asyncio.to_thread(shutil.rmtree, meta_base)
            return count
        return 0


class MailgunSender:
    """Sends mail through the Mailgun HTTP API."""

    def __init__(self, api_key: str, domain: str, base_url: str = "https://api.mailgun.net/v3",
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.domain = domain
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def send(self, message: MailMessage) -> str:
        data = {
            "from": message.sender,
            "to": message.to,
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }
        url = f"{self.base_url}/{self.domain}/messages"
        try:
            if self._client is not None:
                response = await self._client.post(url, auth=("api", self.api_key), data=data)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(url, auth=("api", self.api_key), data=data)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("mailgun", f"Sending to {message.to} failed", exc) from exc
        return response.json().get("message", "Queued")
