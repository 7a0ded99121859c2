from typing import Iterable, List, Mapping, Optional
from .events import ChangeEntry

EMPTY = "(empty)"

TRACKED_SHIPPING_FIELDS = [
    "contact_name",
    "middle_name",
    "email",
    "phone",
    "school_name",
    "position_title",
    "department",
    "principal_name",
    "supervisor",
    "address",
    "city",
    "state",
    "zip",
    "is_internal_order",
]

FIELD_LABELS = {
    "contact_name": "Name",
    "middle_name": "Middle Name",
    "email": "Email",
    "phone": "Phone",
    "school_name": "School",
    "position_title": "Position",
    "department": "Department",
    "principal_name": "Principal",
    "supervisor": "Supervisor",
    "is_internal_order": "Internal Order",
    "name": "Name",
    "description": "Description",
    "category": "Category",
    "subcategory": "Subcategory",
    "in_stock": "In Stock",
}


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def diff(old: Optional[Mapping], new: Optional[Mapping], tracked_fields: Iterable[str]) -> List[ChangeEntry]:
    """Field-level before/after pairs for every tracked field whose value changed.

    Values are compared by equality, so nested lists and dicts compare by content.
    Missing, ``None`` and empty values are treated as the same empty value.
    """
    old = old or {}
    new = new or {}
    changes = []
    for field in tracked_fields:
        before = old.get(field)
        after = new.get(field)
        if _is_empty(before) and _is_empty(after):
            continue
        if before == after:
            continue
        changes.append(ChangeEntry(field=field, before=before, after=after))
    return changes


def display_value(value) -> str:
    if _is_empty(value):
        return EMPTY
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def render_change(change: ChangeEntry, labels: Mapping[str, str] = FIELD_LABELS) -> str:
    label = labels.get(change.field, change.field)
    return f'{label}: "{display_value(change.before)}" → "{display_value(change.after)}"'
