# ==============================================================================
# loyalty/settlement/breakdown.py
# ------------------------------------------------------------------------------
# Value types produced by the method aggregator. A breakdown is one variant of
# a tagged union keyed by distribution method; the engine persists it into a
# single MethodBreakdown row.
# ==============================================================================

import json
from dataclasses import dataclass, field, replace
from typing import List, Optional

from loyalty.models import MethodType

ENTITY_METHODS = (MethodType.GOVERNORATE, MethodType.DISTRICT, MethodType.SEGMENT)


@dataclass(frozen=True)
class EntityRef:
    """An {id, name} pair pointing at a reference-data record."""
    id: int
    name: Optional[str] = None

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


@dataclass(frozen=True)
class BreakdownEntry:
    entity: EntityRef
    value: float

    def to_dict(self):
        return {'entity': self.entity.to_dict(), 'value': self.value}


@dataclass(frozen=True)
class AllBreakdown:
    value: float
    method: MethodType = MethodType.APPLYALL
    incomplete: bool = False


@dataclass(frozen=True)
class RegionBreakdown:
    value: float
    method: MethodType = MethodType.REGION
    incomplete: bool = False


@dataclass(frozen=True)
class UserBreakdown:
    """Per-user values are computed later, when the exported user list is joined in."""
    users_link: Optional[str]
    value: float
    incomplete: bool = False
    method: MethodType = MethodType.USERS


@dataclass(frozen=True)
class EntityBreakdown:
    method: MethodType
    entries: List[BreakdownEntry] = field(default_factory=list)
    incomplete: bool = False

    def value_map(self):
        return {entry.entity.id: entry.value for entry in self.entries}


def apply_floor(breakdown, minimum):
    """
    Raises every positive per-unit value below `minimum` up to it. Zero values
    stay zero: a unit that earns nothing is not topped up.
    """
    if not minimum:
        return breakdown

    def floor(value):
        return max(value, minimum) if value > 0 else value

    if isinstance(breakdown, EntityBreakdown):
        entries = [BreakdownEntry(e.entity, floor(e.value)) for e in breakdown.entries]
        return replace(breakdown, entries=entries)
    return replace(breakdown, value=floor(breakdown.value))


def to_record_fields(breakdown):
    """Flattens a breakdown variant into MethodBreakdown column values."""
    fields = {'method': breakdown.method, 'incomplete': breakdown.incomplete,
              'value': None, 'users_link': None, 'entries_json': None}
    if isinstance(breakdown, EntityBreakdown):
        fields['entries_json'] = json.dumps([e.to_dict() for e in breakdown.entries], ensure_ascii=False)
    elif isinstance(breakdown, UserBreakdown):
        fields['users_link'] = breakdown.users_link
        fields['value'] = breakdown.value
    else:
        fields['value'] = breakdown.value
    return fields


def from_record(record):
    """Rebuilds the breakdown variant from a persisted MethodBreakdown row."""
    method = MethodType(record.method)
    if method in ENTITY_METHODS:
        entries = [BreakdownEntry(EntityRef(e['entity']['id'], e['entity'].get('name')), e['value'])
                   for e in record.entries]
        return EntityBreakdown(method=method, entries=entries, incomplete=record.incomplete)
    if method == MethodType.USERS:
        return UserBreakdown(users_link=record.users_link, value=record.value or 0.0,
                             incomplete=record.incomplete)
    if method == MethodType.REGION:
        return RegionBreakdown(value=record.value or 0.0, incomplete=record.incomplete)
    return AllBreakdown(value=record.value or 0.0, incomplete=record.incomplete)
