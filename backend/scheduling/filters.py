"""Professional filter state for calendar views, derived on every read."""

from dataclasses import dataclass
from typing import Any, Iterable

from backend.scheduling.layout import read_field

DEFAULT_SPECIALTY_NAME = 'Sem especialidade'
DEFAULT_COLOR = '#A78BFA'


@dataclass(frozen=True)
class ProfessionalFilter:
    id: str
    name: str
    specialty_name: str = DEFAULT_SPECIALTY_NAME
    color: str = DEFAULT_COLOR
    selected: bool = True


def derive_professional_filters(
    professionals: Iterable[Any],
    deselected_ids: Iterable[str] = (),
) -> list[ProfessionalFilter]:
    """Every professional is selected unless the viewer switched it off."""
    deselected = {str(professional_id) for professional_id in deselected_ids}
    filters = []
    for professional in professionals:
        professional_id = str(read_field(professional, 'id'))
        filters.append(
            ProfessionalFilter(
                id=professional_id,
                name=read_field(professional, 'name') or '',
                specialty_name=read_field(professional, 'specialty_name') or DEFAULT_SPECIALTY_NAME,
                color=read_field(professional, 'color') or DEFAULT_COLOR,
                selected=professional_id not in deselected,
            )
        )
    return filters


def filter_bookings(bookings: Iterable[Any], filters: Iterable[ProfessionalFilter]) -> list[Any]:
    selected = {item.id for item in filters if item.selected}
    return [
        booking for booking in bookings
        if str(read_field(booking, 'professional_id')) in selected
    ]
