# impostor/domain/common/events.py
"""
Routing envelope for outgoing events.
Events themselves are defined in impostor/transport/protocols.py.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from impostor.transport.protocols import OutgoingEvent


@dataclass
class Outbound:
    event: "OutgoingEvent"
    # None -> every connected member of the room
    targets: Optional[List[str]] = None
    exclude: Optional[str] = None


def to_player(pid: str, event: "OutgoingEvent") -> Outbound:
    return Outbound(event=event, targets=[pid])


def to_room(event: "OutgoingEvent", *, exclude: Optional[str] = None) -> Outbound:
    return Outbound(event=event, exclude=exclude)
