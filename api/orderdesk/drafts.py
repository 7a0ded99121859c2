from typing import Any, Mapping, Sequence, Union

Path = Union[str, Sequence[str]]
_MISSING = object()


def _split(path: Path) -> list:
    if isinstance(path, str):
        return [part for part in path.split(".") if part]
    return list(path)


def get_in(draft: Mapping, path: Path, default: Any = None) -> Any:
    node: Any = draft
    for key in _split(path):
        if not isinstance(node, Mapping) or key not in node:
            return default
        node = node[key]
    return node


def set_in(draft: Mapping, path: Path, value: Any) -> dict:
    keys = _split(path)
    if not keys:
        raise ValueError("empty path")
    head, rest = keys[0], keys[1:]
    updated = dict(draft or {})
    if rest:
        child = updated.get(head)
        updated[head] = set_in(child if isinstance(child, Mapping) else {}, rest, value)
    else:
        updated[head] = value
    return updated


def remove_in(draft: Mapping, path: Path) -> dict:
    keys = _split(path)
    if not keys:
        return dict(draft or {})
    head, rest = keys[0], keys[1:]
    updated = dict(draft or {})
    if head not in updated:
        return updated
    if rest:
        child = updated[head]
        if isinstance(child, Mapping):
            updated[head] = remove_in(child, rest)
    else:
        del updated[head]
    return updated


def apply_updates(draft: Mapping, updates: Mapping[str, Any]) -> dict:
    result = dict(draft or {})
    for path, value in (updates or {}).items():
        result = set_in(result, path, value)
    return result
