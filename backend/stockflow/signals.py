# Overview: Best-effort "records changed" fan-out so dependent views can re-fetch.

from __future__ import annotations

from blinker import Namespace
from flask import current_app

_signals = Namespace()

#: Sent after a successful commit. Receivers get keyword arguments
#: resource, action, store_id and entity_id. It is a hint to re-read
#: authoritative state, never the state itself; no ordering or delivery
#: guarantee.
records_changed = _signals.signal("records-changed")


def notify_change(
    resource: str,
    *,
    action: str,
    store_id: int | None = None,
    entity_id: int | None = None,
) -> None:
    app = current_app._get_current_object()
    try:
        records_changed.send(
            app,
            resource=resource,
            action=action,
            store_id=store_id,
            entity_id=entity_id,
        )
    except Exception:
        # The change is already committed; a failing receiver only loses its hint.
        app.logger.exception("Change notification receiver failed for %s.%s", resource, action)
