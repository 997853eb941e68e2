"""
Sharing Service - encode and parse recipe share links.

A share link is the deep link myrecipebox://import/<token> where the token is
URL-safe base64 (no padding) of compact UTF-8 JSON:

    {"v": 3, "ts": <epoch ms>, "app": "1.3.0",
     "recipe": {"id", "title", "ingredients", "instructions",
                "cooking_method", "source_type", "nutrition"}}

The recipe fields present depend on the format version; each version has its
own frozen dataclass in SHARE_RECIPE_VARIANTS.

An older, unversioned format is still accepted:

    {"recipe": {"title", "description", ..., "version", "checksum"}, "timestamp"}

where checksum is the MD5 of the compact JSON of the recipe minus checksum.

Parsing never raises. parse_share_link() classifies a link into an
ImportOutcome; the version and duplicate stages of the pipeline live in
import_validation_service.

Usage:
    from src.services.sharing_service import encode_share_link, parse_share_link

    link = encode_share_link(recipe)
    outcome = parse_share_link(link)
"""

import base64
import binascii
import dataclasses
import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

from src.services.dto import ImportOutcome, ImportStage, ImportStatus
from src.services.exceptions import PayloadTooLarge, ShareEncodeError
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.constants import (
    APP_VERSION,
    CURRENT_SHARE_VERSION,
    DEEP_LINK_PREFIX,
    DEFAULT_RECIPE_TITLE,
    MAX_LINK_SIZE,
    MAX_QR_SIZE,
    MAX_TEXT_FIELD_LENGTH,
    SOURCE_TYPE_MANUAL,
    SOURCE_TYPE_URL,
    WEB_VIEW_URL,
)
from src.utils.datetime_utils import now_ms

logger = get_service_logger(__name__)


class Transport(Enum):
    """How a share link travels, with the size ceiling that applies to it."""

    LINK = MAX_LINK_SIZE
    QR = MAX_QR_SIZE

    @property
    def limit(self) -> int:
        return self.value


# ============================================================================
# Per-version recipe variants
# ============================================================================


@dataclass(frozen=True)
class ShareRecipeV1:
    """Recipe fields carried by format version 1."""

    id: str
    title: str
    ingredients: str = ""
    instructions: str = ""


@dataclass(frozen=True)
class ShareRecipeV2(ShareRecipeV1):
    """Version 2 adds cooking_method and source_type."""

    cooking_method: Optional[str] = None
    source_type: str = SOURCE_TYPE_MANUAL


@dataclass(frozen=True)
class ShareRecipeV3(ShareRecipeV2):
    """Version 3 adds nutrition ({"calories": number} or None)."""

    nutrition: Optional[Dict[str, Any]] = None


SHARE_RECIPE_VARIANTS: Dict[int, Type[ShareRecipeV1]] = {
    1: ShareRecipeV1,
    2: ShareRecipeV2,
    3: ShareRecipeV3,
}


def _check_variants() -> None:
    expected = set(range(1, CURRENT_SHARE_VERSION + 1))
    if set(SHARE_RECIPE_VARIANTS) != expected:
        raise RuntimeError(
            f"Share recipe variants {sorted(SHARE_RECIPE_VARIANTS)} do not cover "
            f"format versions {sorted(expected)}"
        )


_check_variants()


def share_fields(version: int) -> Tuple[str, ...]:
    """
    Field names carried by a format version.

    Raises:
        KeyError: If the version is unknown
    """
    return tuple(f.name for f in dataclasses.fields(SHARE_RECIPE_VARIANTS[version]))


def share_recipe_from_record(recipe: Dict[str, Any], version: int) -> ShareRecipeV1:
    """
    Select the fields of a stored recipe that a format version carries.

    Args:
        recipe: Stored recipe record
        version: Format version to build

    Returns:
        Variant instance for the version

    Raises:
        ShareEncodeError: If the version is unknown
    """
    variant = SHARE_RECIPE_VARIANTS.get(version)
    if variant is None:
        raise ShareEncodeError(f"Unknown share format version: {version}")

    if recipe.get("source_type"):
        source_type = recipe["source_type"]
    else:
        source_type = SOURCE_TYPE_URL if recipe.get("source_url") else SOURCE_TYPE_MANUAL

    candidates = {
        "id": recipe.get("id"),
        "title": recipe.get("title"),
        "ingredients": recipe.get("ingredients") or "",
        "instructions": recipe.get("instructions") or "",
        "cooking_method": recipe.get("cooking_method") or recipe.get("difficulty") or None,
        "source_type": source_type,
        "nutrition": recipe.get("nutrition") or None,
    }
    return variant(**{name: candidates[name] for name in share_fields(version)})


@dataclass(frozen=True)
class SharePayload:
    """Versioned share payload."""

    v: int
    ts: int
    app: str
    recipe: ShareRecipeV1

    def to_dict(self) -> Dict[str, Any]:
        return {"v": self.v, "ts": self.ts, "app": self.app, "recipe": dataclasses.asdict(self.recipe)}


# ============================================================================
# Token encoding helpers
# ============================================================================


def _to_compact_json(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _encode_token(data: Dict[str, Any]) -> str:
    raw = _to_compact_json(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_token(token: str) -> bytes:
    """Decode standard or URL-safe base64, with or without padding."""
    normalized = token.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def legacy_checksum(recipe: Dict[str, Any]) -> str:
    """
    MD5 over the compact JSON of a legacy recipe without its checksum field.

    Key order is preserved as received.
    """
    fields = {key: value for key, value in recipe.items() if key != "checksum"}
    return hashlib.md5(_to_compact_json(fields).encode("utf-8")).hexdigest()


def _check_size(link: str, transport: Transport) -> None:
    size = len(link.encode("utf-8"))
    if size > transport.limit:
        log_operation(
            logger,
            operation="encode_share_link",
            outcome="size_exceeded",
            level=logging.WARNING,
            size=size,
            limit=transport.limit,
        )
        raise PayloadTooLarge(size, transport.limit)


# ============================================================================
# Encoding
# ============================================================================


def build_share_payload(
    recipe: Dict[str, Any],
    version: int = CURRENT_SHARE_VERSION,
    timestamp_ms: Optional[int] = None,
) -> SharePayload:
    """
    Build the versioned payload for a stored recipe.

    Raises:
        ShareEncodeError: If the recipe has no id or title, or the version is unknown
    """
    if not recipe.get("id") or not recipe.get("title"):
        raise ShareEncodeError("Recipe must have an id and a title to be shared")

    return SharePayload(
        v=version,
        ts=timestamp_ms if timestamp_ms is not None else now_ms(),
        app=APP_VERSION,
        recipe=share_recipe_from_record(recipe, version),
    )


def encode_share_link(
    recipe: Dict[str, Any],
    version: int = CURRENT_SHARE_VERSION,
    transport: Transport = Transport.LINK,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Encode a recipe as a versioned share link.

    Args:
        recipe: Stored recipe record
        version: Format version to write
        transport: LINK or QR; selects the size ceiling
        timestamp_ms: Payload timestamp, defaults to now

    Returns:
        Deep link string

    Raises:
        PayloadTooLarge: If the link is over the transport's ceiling
        ShareEncodeError: If the recipe cannot be shared
    """
    payload = build_share_payload(recipe, version, timestamp_ms)
    link = f"{DEEP_LINK_PREFIX}{_encode_token(payload.to_dict())}"
    _check_size(link, transport)

    log_operation(
        logger,
        operation="encode_share_link",
        outcome="success",
        recipe_id=recipe["id"],
        share_version=version,
        size=len(link),
    )
    return link


LEGACY_SHARE_FIELDS = (
    "title",
    "description",
    "ingredients",
    "instructions",
    "servings",
    "prep_time",
    "cook_time",
    "difficulty",
    "cuisine",
    "tags",
    "rating",
    "notes",
)


def build_legacy_recipe(recipe: Dict[str, Any], version: int = CURRENT_SHARE_VERSION) -> Dict[str, Any]:
    """
    Build the legacy shareable recipe: personal fields and images left out,
    version and checksum added. Unset fields are omitted.
    """
    shareable = {key: recipe[key] for key in LEGACY_SHARE_FIELDS if recipe.get(key) is not None}
    shareable["version"] = version
    shareable["checksum"] = legacy_checksum(shareable)
    return shareable


def encode_legacy_share_link(
    recipe: Dict[str, Any],
    version: int = CURRENT_SHARE_VERSION,
    transport: Transport = Transport.LINK,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Encode a recipe in the legacy checksummed format.

    New shares use encode_share_link(); this exists for older clients.

    Raises:
        PayloadTooLarge: If the link is over the transport's ceiling
        ShareEncodeError: If the recipe has no title
    """
    if not recipe.get("title"):
        raise ShareEncodeError("Recipe must have a title to be shared")

    data = {
        "recipe": build_legacy_recipe(recipe, version),
        "timestamp": timestamp_ms if timestamp_ms is not None else now_ms(),
    }
    link = f"{DEEP_LINK_PREFIX}{_encode_token(data)}"
    _check_size(link, transport)

    logger.info(f"Generated legacy share link, size: {len(link)}")
    return link


def generate_share_message(recipe: Dict[str, Any], version: int = CURRENT_SHARE_VERSION) -> str:
    """
    Build the two-link share text: a web link for people without the app and
    the import link for people with it.

    Args:
        recipe: Stored recipe record
        version: Format version to write, normally the store's current schema version

    Raises:
        PayloadTooLarge: If the recipe is too large to share
    """
    deep_link = encode_share_link(recipe, version=version)
    web_link = WEB_VIEW_URL.format(recipe_id=recipe["id"])
    return f"{recipe['title']}\n\nNo app? View here:\n{web_link}\n\nHave app? Import:\n{deep_link}"


# ============================================================================
# Parsing
# ============================================================================


def _reject(status: ImportStatus, stage: ImportStage, reason: str, **kwargs: Any) -> ImportOutcome:
    log_operation(
        logger,
        operation="parse_share_link",
        outcome=status.value,
        level=logging.WARNING,
        reason=reason,
    )
    return ImportOutcome.rejected(status, stage, errors=[reason], **kwargs)


def _is_version_number(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


_OPTIONAL_TEXT = (str, type(None))
_OPTIONAL_NUMBER = (int, float, type(None))

# Accepted wire types per recipe field, for either format
RECIPE_FIELD_TYPES: Dict[str, Tuple[type, ...]] = {
    "id": (str,),
    "title": (str,),
    "description": _OPTIONAL_TEXT,
    "ingredients": _OPTIONAL_TEXT,
    "instructions": _OPTIONAL_TEXT,
    "servings": _OPTIONAL_NUMBER,
    "prep_time": _OPTIONAL_NUMBER,
    "cook_time": _OPTIONAL_NUMBER,
    "difficulty": _OPTIONAL_TEXT,
    "cuisine": _OPTIONAL_TEXT,
    "tags": (list, type(None)),
    "rating": _OPTIONAL_NUMBER,
    "notes": _OPTIONAL_TEXT,
    "cooking_method": _OPTIONAL_TEXT,
    "source_type": _OPTIONAL_TEXT,
    "nutrition": (dict, type(None)),
}


def _field_type_errors(recipe: Dict[str, Any]) -> List[str]:
    """List the recipe fields whose value has a type the field does not accept."""
    errors = []
    for name, accepted in RECIPE_FIELD_TYPES.items():
        if name not in recipe:
            continue
        value = recipe[name]
        # bool is an int subclass and no field accepts it
        if isinstance(value, bool) or not isinstance(value, accepted):
            errors.append(f"Recipe field {name} has the wrong type: {type(value).__name__}")

    tags = recipe.get("tags")
    if isinstance(tags, list) and not all(isinstance(tag, str) for tag in tags):
        errors.append("Recipe tags must all be text")
    return errors


def parse_share_link(link: str, transport: Transport = Transport.LINK) -> ImportOutcome:
    """
    Run the format and size stages on a share link.

    Checks, in order:
    1. Scheme prefix (else invalid_format)
    2. Whole-link size against the transport ceiling (else size_exceeded)
    3. Base64, UTF-8 and JSON decoding (else corrupted)
    4. Payload shape: versioned, or legacy with a matching checksum, with every
       recipe field of an accepted type (else invalid_format)

    Args:
        link: Deep link as received
        transport: LINK or QR; selects the size ceiling

    Returns:
        ImportOutcome. On success the status is VALID, stage is FORMAT and
        recipe/share_version/legacy are set.
    """
    if not isinstance(link, str) or not link.startswith(DEEP_LINK_PREFIX):
        return _reject(ImportStatus.INVALID_FORMAT, ImportStage.FORMAT, "Invalid deep link format")

    size = len(link.encode("utf-8"))
    if size > transport.limit:
        return _reject(
            ImportStatus.SIZE_EXCEEDED,
            ImportStage.SIZE,
            f"Link is {size} bytes, limit is {transport.limit}",
        )

    token = link[len(DEEP_LINK_PREFIX) :]
    try:
        parsed = json.loads(_decode_token(token).decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        # UnicodeDecodeError and JSONDecodeError are ValueErrors
        return _reject(ImportStatus.CORRUPTED, ImportStage.FORMAT, f"Cannot decode link data: {e}")

    if not isinstance(parsed, dict):
        return _reject(ImportStatus.INVALID_FORMAT, ImportStage.FORMAT, "Link data is not an object")

    recipe = parsed.get("recipe")
    if "v" in parsed and isinstance(recipe, dict):
        return _parse_versioned(parsed, recipe)
    if isinstance(recipe, dict) and "checksum" in recipe and parsed.get("timestamp"):
        return _parse_legacy(recipe)

    return _reject(ImportStatus.INVALID_FORMAT, ImportStage.FORMAT, "Unknown share format")


def _parse_versioned(parsed: Dict[str, Any], recipe: Dict[str, Any]) -> ImportOutcome:
    share_version = parsed["v"]
    if not _is_version_number(share_version):
        return _reject(
            ImportStatus.INVALID_FORMAT, ImportStage.FORMAT, f"Invalid format version: {share_version!r}"
        )

    if not recipe.get("id") or not recipe.get("title"):
        return _reject(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            "Recipe id and title are required",
            share_version=share_version,
        )

    type_errors = _field_type_errors(recipe)
    if type_errors:
        return _reject(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            "; ".join(type_errors),
            share_version=share_version,
        )

    return ImportOutcome(
        status=ImportStatus.VALID,
        stage=ImportStage.FORMAT,
        recipe=recipe,
        share_version=share_version,
    )


def _parse_legacy(recipe: Dict[str, Any]) -> ImportOutcome:
    if not recipe.get("title") or not recipe.get("checksum"):
        return _reject(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            "Recipe title and checksum are required",
            legacy=True,
        )

    share_version = recipe.get("version") or 1
    if not _is_version_number(share_version):
        return _reject(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            f"Invalid recipe version: {share_version!r}",
            legacy=True,
        )

    calculated = legacy_checksum(recipe)
    if calculated != recipe["checksum"]:
        return _reject(
            ImportStatus.CORRUPTED,
            ImportStage.FORMAT,
            f"Checksum mismatch: {calculated} vs {recipe['checksum']}",
            legacy=True,
        )

    type_errors = _field_type_errors(recipe)
    if type_errors:
        return _reject(
            ImportStatus.INVALID_FORMAT,
            ImportStage.FORMAT,
            "; ".join(type_errors),
            share_version=share_version,
            legacy=True,
        )

    return ImportOutcome(
        status=ImportStatus.VALID,
        stage=ImportStage.FORMAT,
        recipe=recipe,
        share_version=share_version,
        legacy=True,
    )


# ============================================================================
# Imported data cleanup
# ============================================================================


def _sanitize_text(value: Any) -> Any:
    if not value or not isinstance(value, str):
        return value
    return value.replace("<", "").replace(">", "")[:MAX_TEXT_FIELD_LENGTH].strip()


def sanitize(recipe: Dict[str, Any]) -> Dict[str, Any]:
    """
    Clean text fields of an imported recipe.

    Angle brackets are removed, text is capped at MAX_TEXT_FIELD_LENGTH and
    trimmed. An empty title becomes DEFAULT_RECIPE_TITLE; empty tags are dropped.

    Returns:
        Sanitized copy
    """
    cleaned = dict(recipe)
    cleaned["title"] = _sanitize_text(recipe.get("title")) or DEFAULT_RECIPE_TITLE
    for key in ("description", "ingredients", "instructions", "notes", "cuisine"):
        if key in recipe:
            cleaned[key] = _sanitize_text(recipe[key])

    tags = recipe.get("tags") or []
    if not isinstance(tags, list):
        tags = []
    cleaned["tags"] = [tag for tag in (_sanitize_text(t) for t in tags) if tag]
    return cleaned


RECORD_FIELDS = (
    "title",
    "description",
    "ingredients",
    "instructions",
    "servings",
    "prep_time",
    "cook_time",
    "difficulty",
    "cuisine",
    "tags",
    "rating",
    "notes",
    "cooking_method",
    "source_type",
    "nutrition",
)


def convert_to_recipe_record(shared: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a storable record from an imported recipe.

    The record has no id (the store assigns a fresh one), is not a favorite and
    has no source URL.
    """
    cleaned = sanitize(shared)
    record = {key: cleaned.get(key) for key in RECORD_FIELDS}
    record["is_favorite"] = False
    record["source_url"] = None
    return record
