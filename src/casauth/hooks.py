"""
casauth Attribute Override Hook

Extension point for transforming the principal produced by a successful
ticket validation (group lookups, claim mapping, local user records).

Listeners are called synchronously, in registration order, with an
``AuthenticateEvent`` carrying the draft principal. A listener supplies a
replacement either by setting ``event.result`` or by returning it. The
first non-empty replacement wins: it becomes the principal in its entirety
(no field-by-field merge) and later listeners are not called.

Example:
    hook = AttributeOverrideHook()

    @hook.listen
    def add_groups(event):
        groups = directory.groups_for(event.subject.username)
        return Principal(
            username=event.subject.username,
            attributes={**event.subject.attributes, "groups": groups},
        )
"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping

import attrs
import structlog

from casauth.core.types import Principal

logger = structlog.get_logger()


AUTHENTICATE_EVENT = "casauth.authenticate"


@attrs.define
class AuthenticateEvent:
    """Notification carrying the draft principal to listeners."""

    subject: Principal
    name: str = AUTHENTICATE_EVENT
    result: Any = None
    _stopped: bool = False

    def stop_propagation(self) -> None:
        """Do not call any further listeners."""
        self._stopped = True

    @property
    def is_stopped(self) -> bool:
        return self._stopped


Listener = Callable[[AuthenticateEvent], Any]


def _to_principal(result: Any) -> Principal:
    if isinstance(result, Principal):
        return result
    if isinstance(result, Mapping):
        return Principal.from_mapping(result)
    raise TypeError(
        f"Authenticate listener result must be a Principal or mapping, got {type(result).__name__}"
    )


@attrs.define
class AttributeOverrideHook:
    """Ordered registry of authenticate listeners."""

    _listeners: List[Listener] = attrs.Factory(list)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def listeners(self) -> List[Listener]:
        return list(self._listeners)

    def listen(self, listener: Listener) -> Listener:
        """Register a listener. Can be used as a decorator."""
        self._listeners.append(listener)
        return listener

    def remove(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def dispatch(self, draft: Principal) -> Principal:
        """
        Run the listeners over the draft principal.

        Exceptions raised by listeners propagate to the caller.

        Returns:
            The first non-empty listener result, or ``draft`` unchanged
        """
        event = AuthenticateEvent(subject=draft)
        for listener in list(self._listeners):
            returned = listener(event)
            if not event.result and returned is not None:
                event.result = returned
            if event.result or event.is_stopped:
                break

        if not event.result:
            return draft

        principal = _to_principal(event.result)
        self._logger.debug(
            "principal_overridden",
            draft_user=draft.username,
            user=principal.username,
        )
        return principal
