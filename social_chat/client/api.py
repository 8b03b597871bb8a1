"""HTTP API client for interacting with the social chat server."""
import mimetypes
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from .storage import SEND_TIMEOUT_SECONDS, get_token


class APIClient:
    def __init__(self, base_url: str, timeout: float = 10, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.send_timeout = send_timeout

    def _headers(self) -> Dict[str, str]:
        token = get_token()
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def websocket_url(self) -> str:
        scheme, _, rest = self.base_url.partition("://")
        ws_scheme = "wss" if scheme == "https" else "ws"
        url = f"{ws_scheme}://{rest}/ws"
        token = get_token()
        return f"{url}?{urlencode({'token': token})}" if token else url

    def register(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.post(f"{self.base_url}/auth/register", json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def login(self, identifier: str, password: str) -> Dict[str, Any]:
        resp = requests.post(
            f"{self.base_url}/auth/login",
            json={"identifier": identifier, "password": password},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def logout(self) -> None:
        resp = requests.post(f"{self.base_url}/auth/logout", headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()

    def list_users(self) -> List[Dict[str, Any]]:
        resp = requests.get(f"{self.base_url}/users", headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_user_status(self, user_id: str) -> Dict[str, Any]:
        resp = requests.get(f"{self.base_url}/users/status/{user_id}", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_conversation(self, user_id: str, peer_id: str) -> Dict[str, Any]:
        resp = requests.get(
            f"{self.base_url}/messages/{user_id}/{peer_id}", headers=self._headers(), timeout=self.timeout
        )
        resp.raise_for_status()
        return resp.json()

    def send_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.post(
            f"{self.base_url}/messages", json=payload, headers=self._headers(), timeout=self.send_timeout
        )
        resp.raise_for_status()
        return resp.json()

    def send_with_attachments(
        self,
        receiver: str,
        text: str = "",
        client_temp_id: Optional[str] = None,
        image_path: Optional[str] = None,
        voice_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        data = {"receiver": receiver, "text": text}
        if client_temp_id:
            data["client_temp_id"] = client_temp_id
        with ExitStack() as stack:
            files = {}
            for field, path in (("image", image_path), ("voice", voice_path)):
                if path:
                    content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
                    files[field] = (Path(path).name, stack.enter_context(open(path, "rb")), content_type)
            resp = requests.post(
                f"{self.base_url}/messages/upload",
                data=data,
                files=files,
                headers=self._headers(),
                timeout=self.send_timeout,
            )
        resp.raise_for_status()
        return resp.json()

    def delete_message(self, message_id: str) -> Dict[str, Any]:
        resp = requests.delete(
            f"{self.base_url}/messages/{message_id}", headers=self._headers(), timeout=self.timeout
        )
        resp.raise_for_status()
        return resp.json()
