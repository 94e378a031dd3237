"""Notification message model for releasegate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from dataclasses_json import DataClassJsonMixin

# Slack attachment colors
NotificationColor = Literal['good', 'warning', 'danger']


@dataclass(frozen=True, slots=True)
class Notification(DataClassJsonMixin):
    """A rendered message for one recipient channel."""

    title: str
    text: str
    color: NotificationColor
