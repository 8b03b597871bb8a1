"""Console client for the social chat application."""
import logging
import sys
from typing import Dict, Optional

import requests

from . import api
from .models import ChatMessage, MessageStatus, User
from .realtime import RealtimeClient
from .session import ChatSession
from .storage import (
    clear_auth,
    get_server_url,
    get_token,
    get_user,
    last_peer,
    remember_peer,
    store_auth,
    store_server_url,
)
from ..shared.utils import is_password_strong


class ChatClient:
    """Interactive console client with live delivery over the realtime channel."""

    def __init__(self, server_url: str):
        self.api = api.APIClient(server_url)
        self.current_user = get_user()

    def register(self) -> None:
        print("=== Register ===")
        username = input("Username: ").strip()
        email = input("Email (optional): ").strip()
        password = input("Password (min 10 chars): ").strip()

        if not is_password_strong(password):
            print("Password too weak or blacklisted.")
            return

        payload = {"username": username, "password": password}
        if email:
            payload["email"] = email
        try:
            self.api.register(payload)
            print("Registration successful. You can now log in.")
        except requests.RequestException as exc:
            print(f"Registration failed: {exc}")

    def login(self) -> bool:
        print("=== Login ===")
        identifier = input("Username or email: ").strip()
        password = input("Password: ").strip()
        try:
            response = self.api.login(identifier, password)
        except requests.RequestException as exc:
            print(f"Login failed: {exc}")
            return False

        store_auth(response["token"], response["user"])
        self.current_user = response["user"]
        print(f"Welcome, {self.current_user['username']}!")
        return True

    def list_users(self) -> Dict[str, User]:
        try:
            users_raw = self.api.list_users()
        except requests.RequestException as exc:
            print(f"Could not fetch users: {exc}")
            return {}
        users = {u["id"]: User(**u) for u in users_raw}
        for u in users.values():
            print(f"- {u.username} ({u.id})")
        return users

    def start_chat(self) -> None:
        users = self.list_users()
        suggestion = last_peer()
        prompt = f"Chat with (username) [{suggestion}]: " if suggestion else "Chat with (username): "
        username = input(prompt).strip() or suggestion or ""
        peer = next((u for u in users.values() if u.username == username), None)
        if not peer:
            print("User not found.")
            return
        remember_peer(peer.username)

        realtime = RealtimeClient(self.api.websocket_url())
        session = ChatSession(self.api, realtime, self.current_user["id"], peer.id, on_change=self._printer(peer))
        try:
            session.open()
            realtime.connect()
        except (requests.RequestException, OSError) as exc:
            print(f"Could not open chat: {exc}")
            realtime.close()
            return

        self._print_history(session, peer)
        try:
            while True:
                print("\nChat commands: [s]end, [a]ttach, [r]etry, [d]elete, [h]istory, [b]ack")
                cmd = input("> ").strip().lower()
                session.expire_pending()
                if cmd == "b":
                    break
                if cmd == "s":
                    text = input("Message: ")
                    if text.strip():
                        session.send(text)
                if cmd == "a":
                    image = input("Image path (blank for none): ").strip() or None
                    voice = input("Voice path (blank for none): ").strip() or None
                    text = input("Caption: ")
                    try:
                        session.send(text, image_path=image, voice_path=voice)
                    except ValueError as exc:
                        print(f"Could not send: {exc}")
                if cmd == "r":
                    key = input("Message key: ").strip()
                    if session.retry(key) is None:
                        print("Nothing to retry.")
                if cmd == "d":
                    key = input("Message key: ").strip()
                    if not session.delete(key):
                        print("Delete failed.")
                if cmd == "h":
                    session.refresh_status()
                    self._print_history(session, peer)
        finally:
            session.close()
            realtime.close()

    def _printer(self, peer: User):
        def on_change(kind: str, entry: Optional[ChatMessage]) -> None:
            if kind == "appended" and entry is not None and entry.sender_id == peer.id:
                print(f"\n{self._format(entry, peer)}")
            elif kind == "failed" and entry is not None:
                print(f"\n! not delivered: {entry.key}")

        return on_change

    def _print_history(self, session: ChatSession, peer: User) -> None:
        status = session.peer_status
        if status.is_online:
            print(f"{peer.username} is online")
        elif status.last_seen:
            print(f"{peer.username} was last seen {status.last_seen:%Y-%m-%d %H:%M}")
        for message in session.messages:
            print(self._format(message, peer))
        if not session.messages:
            print("No messages yet.")

    def _format(self, message: ChatMessage, peer: User) -> str:
        who = "(you)" if message.sender_id == self.current_user["id"] else peer.username
        stamp = f"{message.created_at:%H:%M}" if message.created_at else "--:--"
        body = message.text
        for label, ref in (("image", message.image), ("voice", message.voice)):
            if ref:
                body = f"{body} [{label}: {ref}]".strip()
        suffix = "" if message.status == MessageStatus.SENT else f" ({message.status.value})"
        return f"[{stamp}] {who}: {body}{suffix}  <{message.key}>"

    def logout(self) -> None:
        try:
            self.api.logout()
        except requests.RequestException as exc:
            print(f"Server logout failed: {exc}")
        clear_auth()
        self.current_user = None
        print("Logged out.")


def main():
    logging.basicConfig(level=logging.WARNING)
    print("Social Chat Client")
    default_url = get_server_url() or "http://127.0.0.1:8000"
    server_url = input(f"Server URL [{default_url}]: ").strip() or default_url
    store_server_url(server_url)
    client = ChatClient(server_url)

    while True:
        print("\nMenu: [r]egister, [l]ogin, [q]uit")
        choice = input("> ").strip().lower()
        if choice == "q":
            sys.exit(0)
        if choice == "r":
            client.register()
        if choice == "l":
            if client.login():
                while get_token():
                    print("\nUser menu: [u]sers, [c]hat, [o]logout")
                    sub = input("> ").strip().lower()
                    if sub == "o":
                        client.logout()
                        break
                    if sub == "u":
                        client.list_users()
                    if sub == "c":
                        client.start_chat()


if __name__ == "__main__":
    main()
