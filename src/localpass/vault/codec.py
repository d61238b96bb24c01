# Vault - Entry Codec
#
# Credential entry <-> canonical UTF-8 JSON bytes.
# Decode failures raise DecodeError, never AuthenticationFailure: a payload
# that decrypted correctly but does not parse is a different fault.

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Tuple

from .exceptions import DecodeError, ValidationFailure

# Fields a caller may set on add/update
ENTRY_FIELDS = ("title", "url", "username", "password", "notes", "tags")
TEXT_FIELDS = ("title", "url", "username", "password", "notes")

MAX_TAG_LENGTH = 64


def normalize_tags(tags: Iterable[str], strict: bool = True) -> Tuple[str, ...]:
    """Strip, drop empties and de-duplicate tags, keeping first-seen order.

    ``strict`` enforces MAX_TAG_LENGTH; stored entries are read without it.
    """
    if isinstance(tags, str):
        raise ValidationFailure("tags must be a list of strings")
    seen = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationFailure("tags must be a list of strings")
        tag = tag.strip()
        if not tag:
            continue
        if strict and len(tag) > MAX_TAG_LENGTH:
            raise ValidationFailure(f"Tag exceeds {MAX_TAG_LENGTH} characters")
        if tag not in seen:
            seen.append(tag)
    return tuple(seen)


@dataclass(frozen=True)
class CredentialEntry:
    """
    One decrypted credential.

    Timestamps are Unix epoch milliseconds. ``id`` and ``created_at`` never
    change after creation; ``updated_at`` moves forward on every mutation.
    """

    id: str
    password: str
    title: str = ""
    url: str = ""
    username: str = ""
    notes: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "username": self.username,
            "password": self.password,
            "notes": self.notes,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def merged(self, fields: Mapping[str, Any], updated_at: int) -> "CredentialEntry":
        """Return a copy with ``fields`` applied; id and created_at are kept."""
        changes = validate_entry_fields(fields, partial=True)
        entry = replace(self, **changes, updated_at=max(updated_at, self.created_at))
        if not entry.password:
            raise ValidationFailure("Password is required")
        return entry

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on title, url, username and tags."""
        needle = query.lower()
        return (
            needle in self.title.lower()
            or needle in self.url.lower()
            or needle in self.username.lower()
            or any(needle in tag.lower() for tag in self.tags)
        )


def validate_entry_fields(
    fields: Mapping[str, Any], partial: bool = False, strict: bool = True
) -> Dict[str, Any]:
    """
    Validate user-supplied entry fields.

    Args:
        fields: Mapping of field name -> value (subset of ENTRY_FIELDS)
        partial: True for updates (password may be omitted)
        strict: Apply input-only limits (tag length). Off when decoding
            entries that are already stored

    Returns:
        Cleaned dict ready for CredentialEntry(**...) / replace(...)

    Raises:
        ValidationFailure: Unknown field, wrong type or missing password
    """
    if not isinstance(fields, Mapping):
        raise ValidationFailure("Entry fields must be a mapping")

    unknown = set(fields) - set(ENTRY_FIELDS)
    if unknown:
        raise ValidationFailure(f"Unknown entry fields: {', '.join(sorted(unknown))}")

    cleaned: Dict[str, Any] = {}
    for name in TEXT_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValidationFailure(f"Field '{name}' must be text")
        cleaned[name] = value

    if "tags" in fields:
        cleaned["tags"] = normalize_tags(fields["tags"] or (), strict=strict)

    if "password" in cleaned and not cleaned["password"]:
        raise ValidationFailure("Password is required")
    if not partial and "password" not in cleaned:
        raise ValidationFailure("Password is required")

    return cleaned


def encode_entry(entry: CredentialEntry) -> bytes:
    """Serialize an entry to canonical JSON bytes (sorted keys, no whitespace)."""
    return json.dumps(
        entry.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def decode_entry(data: bytes) -> CredentialEntry:
    """
    Parse bytes produced by ``encode_entry``.

    Raises:
        DecodeError: Not UTF-8 JSON, or not a well-formed entry
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, AttributeError):
        raise DecodeError("Entry payload is not valid JSON") from None

    if not isinstance(payload, dict):
        raise DecodeError("Entry payload must be an object")

    entry_id = payload.get("id")
    if not isinstance(entry_id, str) or not entry_id:
        raise DecodeError("Entry payload has no id")

    timestamps = {}
    for key in ("createdAt", "updatedAt"):
        value = payload.get(key)
        if not isinstance(value, int) or isinstance(value, bool):
            raise DecodeError(f"Entry payload field '{key}' must be an integer")
        timestamps[key] = value
    if timestamps["createdAt"] > timestamps["updatedAt"]:
        raise DecodeError("Entry payload has createdAt after updatedAt")

    fields = {k: payload[k] for k in ENTRY_FIELDS if k in payload}
    try:
        cleaned = validate_entry_fields(fields, strict=False)
    except ValidationFailure as e:
        raise DecodeError(f"Entry payload is invalid: {e}") from None

    return CredentialEntry(
        id=entry_id,
        created_at=timestamps["createdAt"],
        updated_at=timestamps["updatedAt"],
        **cleaned,
    )
