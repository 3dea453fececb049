from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Dict, List, Literal, Protocol

from pydantic import BaseModel

BroadcastHandler = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class BroadcastMessage(BaseModel):
    # без type или с другим type сообщение игнорируется получателем
    type: Literal["hydrate"]
    payload: Dict[str, Any]
    source: str


class BroadcastPort(Protocol):
    """Узкий pub/sub порт между вкладками/процессами одного encounter."""

    def publish(self, topic: str, message: Dict[str, Any]) -> None: ...

    def subscribe(self, topic: str, handler: BroadcastHandler) -> Unsubscribe: ...


def encounter_topic(encounter_id: str, prefix: str) -> str:
    return f"{prefix}{encounter_id}"


class InMemoryBroadcastHub:
    """
    Процессный hub: каждому подписчику уходит своя копия сообщения
    (в том числе самому отправителю, эхо отсекается по source).
    При запущенном loop доставка асинхронная, как у BroadcastChannel.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[BroadcastHandler]] = {}

    def subscribe(self, topic: str, handler: BroadcastHandler) -> Unsubscribe:
        self._subscribers.setdefault(topic, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subscribers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._subscribers[topic]

        return _unsubscribe

    def publish(self, topic: str, message: Dict[str, Any]) -> None:
        handlers = list(self._subscribers.get(topic, ()))
        if not handlers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for handler in handlers:
            msg = copy.deepcopy(message)
            if loop is not None:
                loop.call_soon(handler, msg)
            else:
                handler(msg)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))
