from __future__ import annotations

import base64
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from threading import Lock
from typing import List

from suprimentos.http_client import HttpClientError, request_json


logger = logging.getLogger("suprimentos.sourcing.email")


class EmailTransportError(RuntimeError):
    def __init__(self, message: str, *, not_connected: bool = False) -> None:
        super().__init__(message)
        self.not_connected = not_connected


@dataclass(frozen=True)
class EmailDispatchResult:
    message_id: str | None = None
    thread_id: str | None = None


class EmailTransport(ABC):
    @abstractmethod
    def send_email(self, to: str, subject: str, body: str) -> EmailDispatchResult:
        raise NotImplementedError

    @abstractmethod
    def connect(self, token: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def validate_token(self) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class OutboxMessage:
    to: str
    subject: str
    body: str
    message_id: str


class MockEmailTransport(EmailTransport):
    """Transporte local: guarda as mensagens em memoria (modo ``EMAIL_MODE=mock``)."""

    def __init__(self, connected: bool = True) -> None:
        self._lock = Lock()
        self._connected = connected
        self.outbox: List[OutboxMessage] = []

    def send_email(self, to: str, subject: str, body: str) -> EmailDispatchResult:
        if not self._connected:
            raise EmailTransportError("Nenhuma conta de email conectada.", not_connected=True)
        if not str(to or "").strip():
            raise EmailTransportError("Destinatario vazio.")
        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self.outbox.append(OutboxMessage(to=to, subject=subject, body=body, message_id=message_id))
        return EmailDispatchResult(message_id=message_id)

    def connect(self, token: str) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def validate_token(self) -> bool:
        return self._connected


class GmailApiTransport(EmailTransport):
    """Envio pela API REST do Gmail (``users.messages.send`` com MIME em base64url)."""

    def __init__(self, base_url: str, access_token: str | None = None, sender: str = "me") -> None:
        self.base_url = base_url.rstrip("/")
        self.sender = sender or "me"
        self._token = (access_token or "").strip() or None

    def _headers(self) -> dict:
        if not self._token:
            raise EmailTransportError("Token do Gmail nao configurado.", not_connected=True)
        return {"Authorization": f"Bearer {self._token}"}

    @staticmethod
    def build_raw_message(to: str, subject: str, body: str, sender: str | None = None) -> str:
        message = EmailMessage()
        message["To"] = to
        message["Subject"] = subject
        if sender and sender != "me":
            message["From"] = sender
        message.set_content(body)
        return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")

    def send_email(self, to: str, subject: str, body: str) -> EmailDispatchResult:
        raw = self.build_raw_message(to, subject, body, self.sender)
        try:
            response = request_json(
                "POST",
                f"{self.base_url}/users/me/messages/send",
                payload={"raw": raw},
                headers=self._headers(),
                target="gmail",
                retry_attempts=0,
            )
        except HttpClientError as exc:
            raise EmailTransportError(str(exc), not_connected=exc.status_code in {401, 403}) from exc
        if not isinstance(response, dict):
            raise EmailTransportError("Resposta inesperada do Gmail.")
        return EmailDispatchResult(message_id=response.get("id"), thread_id=response.get("threadId"))

    def connect(self, token: str) -> None:
        self._token = (token or "").strip() or None

    def disconnect(self) -> None:
        self._token = None

    def is_connected(self) -> bool:
        return self._token is not None

    def validate_token(self) -> bool:
        if not self._token:
            return False
        try:
            profile = request_json(
                "GET",
                f"{self.base_url}/users/me/profile",
                headers=self._headers(),
                target="gmail",
                retry_attempts=0,
            )
        except HttpClientError as exc:
            logger.warning("gmail_token_invalid", extra={"details": str(exc)})
            return False
        return isinstance(profile, dict) and bool(profile.get("emailAddress"))
