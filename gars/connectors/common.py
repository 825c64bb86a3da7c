"""Shared types for chat connectors: targets, messages, events and the connector interface."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

__all__ = [
    "ChatTarget",
    "UserInfo",
    "Attachment",
    "OutboundMessage",
    "InboundEvent",
    "MessageEvent",
    "CommandEvent",
    "ConnectorCaps",
    "ConnectorState",
    "ConnectorEvent",
    "ConnectorContext",
    "WebhookRequest",
    "WebhookError",
    "Connector",
]


def _require(data: Mapping[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"missing field {key!r}")
    return data[key]


@dataclass
class ChatTarget:
    chat_id: str
    thread_id: str | None = None
    reply_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"chat_id": self.chat_id, "thread_id": self.thread_id, "reply_to": self.reply_to}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChatTarget:
        return cls(
            chat_id=_require(data, "chat_id"),
            thread_id=data.get("thread_id"),
            reply_to=data.get("reply_to"),
        )


@dataclass
class UserInfo:
    id: str
    name: str = ""
    is_admin: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "is_admin": self.is_admin}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserInfo:
        return cls(
            id=_require(data, "id"),
            name=data.get("name", ""),
            is_admin=bool(data.get("is_admin", False)),
        )


@dataclass
class Attachment:
    kind: str = ""
    url: str | None = None
    bytes_base64: str | None = None
    mime: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "url": self.url,
            "bytes_base64": self.bytes_base64,
            "mime": self.mime,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Attachment:
        return cls(
            kind=_require(data, "kind"),
            url=data.get("url"),
            bytes_base64=data.get("bytes_base64"),
            mime=data.get("mime"),
        )


@dataclass
class OutboundMessage:
    text: str = ""
    markdown: bool = False
    attachments: list[Attachment] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


class InboundEvent(ABC):
    """An event received from a chat platform, tagged by ``type`` on the wire."""

    connector: str
    chat: ChatTarget
    user: UserInfo

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Serialise with a ``type`` tag."""

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> InboundEvent:
        kind = data.get("type")
        if kind == "message":
            return MessageEvent(
                connector=_require(data, "connector"),
                chat=ChatTarget.from_dict(_require(data, "chat")),
                user=UserInfo.from_dict(_require(data, "user")),
                text=_require(data, "text"),
                attachments=[Attachment.from_dict(a) for a in data.get("attachments", [])],
            )
        if kind == "command":
            return CommandEvent(
                connector=_require(data, "connector"),
                chat=ChatTarget.from_dict(_require(data, "chat")),
                command=_require(data, "command"),
                args=_require(data, "args"),
                user=UserInfo.from_dict(_require(data, "user")),
            )
        raise ValueError(f"unknown inbound event type: {kind!r}")


@dataclass
class MessageEvent(InboundEvent):
    connector: str
    chat: ChatTarget
    user: UserInfo
    text: str
    attachments: list[Attachment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "message",
            "connector": self.connector,
            "chat": self.chat.to_dict(),
            "user": self.user.to_dict(),
            "text": self.text,
            "attachments": [a.to_dict() for a in self.attachments],
        }


@dataclass
class CommandEvent(InboundEvent):
    connector: str
    chat: ChatTarget
    command: str
    args: str
    user: UserInfo

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "command",
            "connector": self.connector,
            "chat": self.chat.to_dict(),
            "command": self.command,
            "args": self.args,
            "user": self.user.to_dict(),
        }


@dataclass
class ConnectorCaps:
    text: bool = False
    markdown: bool = False
    image: bool = False
    file: bool = False
    stream_edit: bool = False


@dataclass
class ConnectorState:
    id: str
    enabled: bool = False
    status: str = ""
    last_error: str | None = None
    last_ping: str | None = None


@dataclass
class ConnectorEvent:
    connector: str
    kind: str
    payload: Any = None


@dataclass
class ConnectorContext:
    """What a running connector gets: paths, store, the inbound event queue and its config."""

    paths: Any
    store: Any
    event_bus: asyncio.Queue
    admin_token: str = ""
    rest_base: str = ""
    config: Any = field(default_factory=dict)


@dataclass
class WebhookRequest:
    """Headers (lower-cased keys) and raw body of an inbound webhook."""

    headers: Mapping[str, str]
    body: bytes


class WebhookError(Exception):
    """An inbound webhook was rejected."""


class Connector(ABC):
    """A chat platform that delivers inbound events and sends messages."""

    @abstractmethod
    def id(self) -> str:
        """Connector identifier, e.g. the platform name."""

    @abstractmethod
    def capabilities(self) -> ConnectorCaps:
        """What message features the platform supports."""

    @abstractmethod
    async def run(self, ctx: ConnectorContext) -> None:
        """Receive events until cancelled, putting them on ``ctx.event_bus``."""

    @abstractmethod
    async def send(self, target: ChatTarget, msg: OutboundMessage) -> None:
        """Deliver ``msg`` to ``target``."""

    def verify_webhook(self, req: WebhookRequest) -> None:
        """Check an inbound webhook; by default every webhook is rejected."""
        raise WebhookError(f"connector '{self.id()}' does not support inbound webhooks")