"""Typed rows handed from the record store to the reporting code."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional

from .models import Activity

NO_CLIENT_LABEL = "Nessun cliente"


@dataclass(slots=True, frozen=True)
class ActivityRow:
    """One activity joined with its client name."""

    date: dt.date
    client_name: Optional[str]
    title: str
    description: Optional[str]
    minutes: int
    reference_verbale: Optional[str]
    resource_icon: Optional[str]
    in_gestore: bool
    verbale_done: bool

    @property
    def client_display(self) -> str:
        return self.client_name or NO_CLIENT_LABEL

    @property
    def label(self) -> str:
        """Reference if one is set, otherwise the title."""
        return self.reference_verbale if self.reference_verbale else self.title

    @property
    def hours(self) -> float:
        return minutes_to_hours(self.minutes)


def minutes_to_hours(minutes: int) -> float:
    return round(minutes / 60, 2)


def row_from_model(activity: Activity) -> ActivityRow:
    return ActivityRow(
        date=activity.date,
        client_name=activity.client_name,
        title=activity.title,
        description=activity.description,
        minutes=int(activity.minutes or 0),
        reference_verbale=activity.reference_verbale,
        resource_icon=activity.resource_icon,
        in_gestore=bool(activity.in_gestore),
        verbale_done=bool(activity.verbale_done),
    )
