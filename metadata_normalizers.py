"""
Metadata Normalizers
────────────────────
Coerce whatever the vision model returned into a total `ImageMetadata`.

The model may emit `null`, "None", wrong types, or a list where an object was
expected. Every function here absorbs those shapes into the schema's empty
values; none of them raise for malformed data.
"""

import json
import math
import re
from typing import Any, List, Mapping, Optional

from .metadata_schema import (
    DNAConfidence,
    DetailsSection,
    FaceGeometry,
    HairSpecifics,
    IdentityColor,
    ImageMetadata,
    MetaSection,
    PaletteSection,
    SceneSection,
    SubjectIdentity,
    SubjectSection,
    TechnicalSection,
    TextContentSection,
)

# Placeholders upstream producers use for "no data"
NULL_SENTINELS = ("None", "none")

_LEADING_FLOAT = re.compile(r"\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Scalars & lists
# ---------------------------------------------------------------------------
def normalize_string(val: Any) -> str:
    """Return *val* if it is a real string, else ""."""
    if val is None or not isinstance(val, str):
        return ""
    if val in NULL_SENTINELS:
        return ""
    return val


def _stringify(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, bool):
        return "true" if item else "false"
    if isinstance(item, float) and item.is_integer():
        return str(int(item))
    return str(item)


def normalize_array(val: Any) -> List[str]:
    """Return a list of strings with null sentinels removed."""
    if not isinstance(val, (list, tuple)):
        return []
    return [
        _stringify(item)
        for item in val
        if item is not None and not (isinstance(item, str) and item in NULL_SENTINELS)
    ]


def _as_mapping(val: Any) -> Mapping[str, Any]:
    return val if isinstance(val, Mapping) else {}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def normalize_identity_color(val: Any) -> IdentityColor:
    obj = _as_mapping(val)
    return IdentityColor(
        description=normalize_string(obj.get("description")),
        hex=normalize_string(obj.get("hex")),
    )


def normalize_face_geometry(val: Any) -> Optional[FaceGeometry]:
    """Face geometry, or None when no field carries data."""
    if not isinstance(val, Mapping):
        return None
    geo = FaceGeometry(
        face_shape=normalize_string(val.get("faceShape")),
        eye_shape=normalize_string(val.get("eyeShape")),
        brow_style=normalize_string(val.get("browStyle")),
        nose_shape=normalize_string(val.get("noseShape")),
        lip_shape=normalize_string(val.get("lipShape")),
    )
    if not any((geo.face_shape, geo.eye_shape, geo.brow_style, geo.nose_shape, geo.lip_shape)):
        return None
    return geo


def normalize_hair_specifics(val: Any) -> Optional[HairSpecifics]:
    """Hair specifics, or None when no field carries data."""
    if not isinstance(val, Mapping):
        return None
    hair = HairSpecifics(
        hair_length=normalize_string(val.get("hairLength")),
        hair_wave=normalize_string(val.get("hairWave")),
        hair_part=normalize_string(val.get("hairPart")),
    )
    if not any((hair.hair_length, hair.hair_wave, hair.hair_part)):
        return None
    return hair


def _clamp_unit(val: Any) -> float:
    """Parse *val* as a number and clamp to [0, 1]; unparsable → 0."""
    if isinstance(val, bool):
        return 0.0
    if isinstance(val, (int, float)):
        try:
            num = float(val)
        except OverflowError:
            # int beyond float range
            return 1.0 if val > 0 else 0.0
    else:
        match = _LEADING_FLOAT.match(str(val))
        if not match:
            return 0.0
        num = float(match.group(0))
    if math.isnan(num):
        return 0.0
    return max(0.0, min(1.0, num))


def normalize_confidence(val: Any) -> Optional[DNAConfidence]:
    """Confidence scores, or None when `overall` is zero (nothing extracted)."""
    if not isinstance(val, Mapping):
        return None
    conf = DNAConfidence(
        overall=_clamp_unit(val.get("overall")),
        primary_color=_clamp_unit(val.get("primaryColor")),
        secondary_color=_clamp_unit(val.get("secondaryColor")),
        accent_color=_clamp_unit(val.get("accentColor")),
        face_geometry=_clamp_unit(val.get("faceGeometry")),
        hair_specifics=_clamp_unit(val.get("hairSpecifics")),
    )
    return conf if conf.overall > 0 else None


def normalize_identity(val: Any) -> Optional[SubjectIdentity]:
    """
    Normalize a subject identity block.

    An identity is only kept when it carries a strong signal: the primary
    color description or the fixed seed phrase.
    """
    if not isinstance(val, Mapping):
        return None

    primary_color = normalize_identity_color(val.get("primaryColor"))
    fixed_seed = normalize_string(val.get("fixedSeed"))
    if not primary_color.description and not fixed_seed:
        return None

    return SubjectIdentity(
        primary_color=primary_color,
        secondary_color=normalize_identity_color(val.get("secondaryColor")),
        accent_color=normalize_identity_color(val.get("accentColor")),
        texture=normalize_string(val.get("texture")),
        structure=normalize_string(val.get("structure")),
        distinguishing_features=normalize_array(val.get("distinguishingFeatures")),
        estimated_age=normalize_string(val.get("estimatedAge")),
        species=normalize_string(val.get("species")),
        fixed_seed=fixed_seed,
        face_geometry=normalize_face_geometry(val.get("faceGeometry")),
        hair_specifics=normalize_hair_specifics(val.get("hairSpecifics")),
        identity_negatives=normalize_array(val.get("identityNegatives")) or None,
        confidence=normalize_confidence(val.get("confidence")),
    )


# ---------------------------------------------------------------------------
# Whole record
# ---------------------------------------------------------------------------
def normalize_metadata(raw: Any) -> ImageMetadata:
    """
    Normalize parsed JSON into a complete `ImageMetadata`.

    Accepts anything. Non-mapping input yields an all-empty record; an
    existing `ImageMetadata` is re-normalized from its wire form.
    """
    if isinstance(raw, ImageMetadata):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        return ImageMetadata()

    meta = _as_mapping(raw.get("meta"))
    subject = _as_mapping(raw.get("subject"))
    scene = _as_mapping(raw.get("scene"))
    technical = _as_mapping(raw.get("technical"))
    palette = _as_mapping(raw.get("palette"))
    details = _as_mapping(raw.get("details"))
    text_content = _as_mapping(raw.get("text_content"))

    return ImageMetadata(
        meta=MetaSection(
            intent=normalize_string(meta.get("intent")),
            aspect_ratio=normalize_string(meta.get("aspect_ratio")),
            quality=normalize_string(meta.get("quality")),
        ),
        subject=SubjectSection(
            archetype=normalize_string(subject.get("archetype")),
            description=normalize_string(subject.get("description")),
            expression=normalize_string(subject.get("expression")),
            pose=normalize_string(subject.get("pose")),
            attire=normalize_string(subject.get("attire")),
            identity=normalize_identity(subject.get("identity")),
        ),
        scene=SceneSection(
            setting=normalize_string(scene.get("setting")),
            atmosphere=normalize_string(scene.get("atmosphere")),
            elements=normalize_array(scene.get("elements")),
        ),
        technical=TechnicalSection(
            shot=normalize_string(technical.get("shot")),
            lens=normalize_string(technical.get("lens")),
            lighting=normalize_string(technical.get("lighting")),
            render=normalize_string(technical.get("render")),
        ),
        palette=PaletteSection(
            colors=normalize_array(palette.get("colors")),
            mood=normalize_string(palette.get("mood")),
        ),
        details=DetailsSection(
            textures=normalize_array(details.get("textures")),
            accents=normalize_array(details.get("accents")),
        ),
        negative=normalize_string(raw.get("negative")),
        text_content=TextContentSection(
            overlay=normalize_string(text_content.get("overlay")),
            style=normalize_string(text_content.get("style")),
        ),
    )


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json … ``` fence, if any."""
    return _CODE_FENCE.sub("", text or "").strip()


def parse_metadata_json(text: str) -> ImageMetadata:
    """
    Lenient text entry point used by the nodes.

    Invalid JSON yields empty metadata; a JSON array uses its first analysis.
    """
    try:
        parsed = json.loads(strip_code_fences(text))
    except (TypeError, ValueError):
        return ImageMetadata()
    if isinstance(parsed, list):
        parsed = parsed[0] if parsed else None
    return normalize_metadata(parsed)


def calculate_completeness(metadata: ImageMetadata) -> int:
    """Percentage (0-100) of populated descriptive fields."""
    fields = [
        metadata.meta.intent, metadata.meta.aspect_ratio, metadata.meta.quality,
        metadata.subject.archetype, metadata.subject.description, metadata.subject.expression,
        metadata.subject.pose, metadata.subject.attire,
        metadata.scene.setting, metadata.scene.atmosphere,
        metadata.technical.shot, metadata.technical.lens, metadata.technical.lighting,
        metadata.technical.render,
        metadata.palette.mood,
        metadata.negative,
        metadata.text_content.overlay, metadata.text_content.style,
    ]
    lists = [
        metadata.scene.elements, metadata.palette.colors,
        metadata.details.textures, metadata.details.accents,
    ]
    filled = sum(1 for f in fields if f.strip()) + sum(1 for items in lists if items)
    return round(filled / (len(fields) + len(lists)) * 100)
