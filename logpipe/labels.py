"""Labels attached to every structured record.

Labels arrive as the JSON form of a ``Labels`` message::

    {"labels": [{"key": "SERVICE", "value": "web"}, ...]}

or, from a YAML config file, as a plain list of ``{key, value}`` mappings.
Keys are converted to uppercase and must then be valid journald field
names: letters, digits and underscores, at most 64 characters, starting with
a letter. journald silently discards any other field, and names starting with
an underscore are reserved for its own trusted fields.
"""

import json
import re
from dataclasses import dataclass, field

from logpipe.errors import ValidationError

MESSAGE_FIELD = "MESSAGE"

_SCALAR_TYPES = (str, int, float)

_FIELD_NAME_RE = re.compile(r"[A-Z][A-Z0-9_]{0,63}")


def normalize_key(key: str) -> str:
    return key.strip().upper()


@dataclass(frozen=True)
class Label:
    key: str
    value: str

    def __post_init__(self):
        key = normalize_key(self.key)
        if not key:
            raise ValidationError("Label key must not be empty")
        if not _FIELD_NAME_RE.fullmatch(key):
            raise ValidationError(
                f"Label key {key!r} is not a valid journald field name "
                "(A-Z, 0-9 and _, starting with a letter, at most 64 characters)"
            )
        object.__setattr__(self, "key", key)


@dataclass(frozen=True)
class LabelSet:
    labels: tuple[Label, ...] = field(default_factory=tuple)

    @classmethod
    def from_pairs(cls, pairs, allow_overrides: bool = False) -> "LabelSet":
        """Build a LabelSet from ``(key, value)`` pairs.

        Two keys that normalize to the same uppercase name are rejected unless
        *allow_overrides* is set, in which case the last value wins and keeps
        the position of the first occurrence.
        """
        ordered: dict[str, Label] = {}
        for key, value in pairs:
            label = Label(key, value)
            if label.key in ordered and not allow_overrides:
                raise ValidationError(f"Duplicate label key: {label.key}")
            ordered[label.key] = label
        return cls(tuple(ordered.values()))

    def fields(self) -> list[tuple[str, str]]:
        return [(label.key, label.value) for label in self.labels]

    def as_dict(self) -> dict[str, str]:
        return dict(self.fields())

    def record(self, message) -> list[tuple]:
        """Return the record fields for one line: every label plus MESSAGE."""
        return self.fields() + [(MESSAGE_FIELD, message)]

    def __iter__(self):
        return iter(self.labels)

    def __len__(self) -> int:
        return len(self.labels)


def _coerce_value(key: str, value) -> str:
    if isinstance(value, bool) or not isinstance(value, _SCALAR_TYPES):
        raise ValidationError(f"Label {key!r} must have a string value")
    return str(value)


def parse_labels(raw, allow_overrides: bool = False) -> LabelSet:
    """Parse labels from a JSON string, a ``{"labels": [...]}`` mapping or a list.

    Raises ValidationError on any malformed input.
    """
    if raw is None or raw == "":
        return LabelSet()

    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Failed to parse labels as JSON: {exc}") from exc

    if isinstance(data, dict):
        if set(data) - {"labels"}:
            raise ValidationError(
                f"Unexpected label fields: {', '.join(sorted(set(data) - {'labels'}))}"
            )
        data = data.get("labels", [])

    if not isinstance(data, list):
        raise ValidationError("Labels must be a list of {key, value} objects")

    pairs = []
    for item in data:
        if not isinstance(item, dict) or "key" not in item:
            raise ValidationError(f"Malformed label entry: {item!r}")
        key = item["key"]
        if not isinstance(key, str):
            raise ValidationError(f"Label key must be a string, got {key!r}")
        pairs.append((key, _coerce_value(key, item.get("value", ""))))

    return LabelSet.from_pairs(pairs, allow_overrides=allow_overrides)
