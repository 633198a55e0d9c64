"""
Identity Hydration
──────────────────
Turns a stored `SubjectIdentity` into a `LockedSubjectIdentity` where every
lockable attribute carries its three drift negatives, then flattens that
into positive / negative prompt phrases.

Hydration happens at prompt time; locked identities are never persisted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from .drift_maps import DriftCategory, Negatives, infer_negatives
from .metadata_schema import (
    DNAConfidence,
    FaceGeometry,
    HairSpecifics,
    IdentityColor,
    SubjectIdentity,
)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Locked structures
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Locked(Generic[T]):
    """A value plus the three values a generator is likely to drift to."""

    value: T
    avoid: Negatives

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {"is": value, "not": list(self.avoid)}


LockedIdentityColor = Locked[IdentityColor]


@dataclass(frozen=True)
class LockedFaceGeometry:
    face_shape: Locked[str]
    eye_shape: Locked[str]
    brow_style: Locked[str]
    nose_shape: Locked[str]
    lip_shape: Locked[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faceShape": self.face_shape.to_dict(),
            "eyeShape": self.eye_shape.to_dict(),
            "browStyle": self.brow_style.to_dict(),
            "noseShape": self.nose_shape.to_dict(),
            "lipShape": self.lip_shape.to_dict(),
        }


@dataclass(frozen=True)
class LockedHairSpecifics:
    hair_length: Locked[str]
    hair_wave: Locked[str]
    hair_part: Locked[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hairLength": self.hair_length.to_dict(),
            "hairWave": self.hair_wave.to_dict(),
            "hairPart": self.hair_part.to_dict(),
        }


@dataclass(frozen=True)
class LockedSubjectIdentity:
    primary_color: LockedIdentityColor      # eyes
    secondary_color: LockedIdentityColor    # skin
    accent_color: LockedIdentityColor       # hair
    texture: Locked[str]
    structure: Locked[str]
    distinguishing_features: Tuple[str, ...] = ()
    estimated_age: str = ""
    species: str = ""
    fixed_seed: str = ""
    face_geometry: Optional[LockedFaceGeometry] = None
    hair_specifics: Optional[LockedHairSpecifics] = None
    identity_negatives: Optional[Tuple[str, ...]] = None
    confidence: Optional[DNAConfidence] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "primaryColor": self.primary_color.to_dict(),
            "secondaryColor": self.secondary_color.to_dict(),
            "accentColor": self.accent_color.to_dict(),
            "texture": self.texture.to_dict(),
            "structure": self.structure.to_dict(),
            "distinguishingFeatures": list(self.distinguishing_features),
            "estimatedAge": self.estimated_age,
            "species": self.species,
            "fixedSeed": self.fixed_seed,
        }
        if self.face_geometry is not None:
            out["faceGeometry"] = self.face_geometry.to_dict()
        if self.hair_specifics is not None:
            out["hairSpecifics"] = self.hair_specifics.to_dict()
        if self.identity_negatives is not None:
            out["identityNegatives"] = list(self.identity_negatives)
        if self.confidence is not None:
            out["confidence"] = self.confidence.to_dict()
        return out


@dataclass
class PromptPair:
    positive: List[str] = field(default_factory=list)
    negative: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------
def _lock(value: Optional[str], category: DriftCategory) -> Locked[str]:
    safe = value or ""
    return Locked(safe, infer_negatives(category, safe))


def _lock_color(color: IdentityColor, category: DriftCategory) -> LockedIdentityColor:
    return Locked(color, infer_negatives(category, color.description))


def _lock_face_geometry(geo: FaceGeometry) -> LockedFaceGeometry:
    return LockedFaceGeometry(
        face_shape=_lock(geo.face_shape, DriftCategory.FACE_SHAPE),
        eye_shape=_lock(geo.eye_shape, DriftCategory.EYE_SHAPE),
        brow_style=_lock(geo.brow_style, DriftCategory.BROW_STYLE),
        nose_shape=_lock(geo.nose_shape, DriftCategory.NOSE_SHAPE),
        lip_shape=_lock(geo.lip_shape, DriftCategory.LIP_SHAPE),
    )


def _lock_hair_specifics(hair: HairSpecifics) -> LockedHairSpecifics:
    return LockedHairSpecifics(
        hair_length=_lock(hair.hair_length, DriftCategory.HAIR_LENGTH),
        hair_wave=_lock(hair.hair_wave, DriftCategory.HAIR_WAVE),
        hair_part=_lock(hair.hair_part, DriftCategory.HAIR_PART),
    )


def hydrate_identity(identity: SubjectIdentity) -> LockedSubjectIdentity:
    """
    Lock every lockable attribute of *identity* against its drift table.

    Colors map by slot: primary → eye color, secondary → skin tone,
    accent → hair color. Species, age, seed, features, user negatives and
    confidence pass through untouched.
    """
    return LockedSubjectIdentity(
        primary_color=_lock_color(identity.primary_color, DriftCategory.EYE_COLOR),
        secondary_color=_lock_color(identity.secondary_color, DriftCategory.SKIN_TONE),
        accent_color=_lock_color(identity.accent_color, DriftCategory.HAIR_COLOR),
        texture=_lock(identity.texture, DriftCategory.TEXTURE),
        structure=_lock(identity.structure, DriftCategory.STRUCTURE),
        distinguishing_features=tuple(identity.distinguishing_features or ()),
        estimated_age=identity.estimated_age or "",
        species=identity.species or "",
        fixed_seed=identity.fixed_seed or "",
        face_geometry=(
            _lock_face_geometry(identity.face_geometry)
            if identity.face_geometry is not None else None
        ),
        hair_specifics=(
            _lock_hair_specifics(identity.hair_specifics)
            if identity.hair_specifics is not None else None
        ),
        identity_negatives=(
            tuple(identity.identity_negatives)
            if identity.identity_negatives is not None else None
        ),
        confidence=identity.confidence,
    )


# ---------------------------------------------------------------------------
# Prompt phrases
# ---------------------------------------------------------------------------
def _dedupe(items) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def build_locked_identity_prompt_pair(locked: LockedSubjectIdentity) -> PromptPair:
    """
    Flatten a locked identity into ordered positive phrases and a
    de-duplicated negative list.

    Order: species, age, face geometry, eyes, skin, one combined hair
    phrase, build, texture (only when no hair specifics), up to three
    distinguishing features, and the quoted fixed seed.
    """
    positive: List[str] = []
    negative: List[str] = []

    def emit(phrase: str, lock: Locked) -> None:
        positive.append(phrase)
        negative.extend(n for n in lock.avoid if n)

    if locked.species:
        positive.append(locked.species)
    if locked.estimated_age:
        positive.append(locked.estimated_age)

    geo = locked.face_geometry
    if geo is not None:
        for lock, noun in (
            (geo.face_shape, "face"),
            (geo.eye_shape, "eyes"),
            (geo.brow_style, "brows"),
            (geo.nose_shape, "nose"),
            (geo.lip_shape, "lips"),
        ):
            if lock.value:
                emit(f"{lock.value} {noun}", lock)

    if locked.primary_color.value.description:
        emit(f"{locked.primary_color.value.description} eyes", locked.primary_color)
    if locked.secondary_color.value.description:
        emit(f"{locked.secondary_color.value.description} skin", locked.secondary_color)

    # Hair: modifiers before the noun, one clause
    hair_words: List[str] = []
    hair = locked.hair_specifics
    if hair is not None:
        for lock in (hair.hair_length, hair.hair_wave):
            if lock.value:
                hair_words.append(lock.value)
                negative.extend(n for n in lock.avoid if n)
    if locked.accent_color.value.description:
        hair_words.append(locked.accent_color.value.description)
        negative.extend(n for n in locked.accent_color.avoid if n)

    texture_used = False
    if hair_words:
        phrase = " ".join(hair_words) + " hair"
        if hair is not None and hair.hair_part.value and hair.hair_part.value != "none":
            phrase += f" parted {hair.hair_part.value}"
            negative.extend(n for n in hair.hair_part.avoid if n)
        positive.append(phrase)
    elif locked.texture.value:
        emit(locked.texture.value, locked.texture)
        texture_used = True

    if locked.structure.value:
        emit(f"{locked.structure.value} build", locked.structure)

    if locked.texture.value and hair is None and not texture_used:
        emit(locked.texture.value, locked.texture)

    if locked.distinguishing_features:
        positive.append(", ".join(locked.distinguishing_features[:3]))

    if locked.fixed_seed:
        positive.append(f'"{locked.fixed_seed}"')

    if locked.identity_negatives:
        negative.extend(locked.identity_negatives)

    return PromptPair(
        positive=[p for p in positive if p],
        negative=_dedupe(negative),
    )


def get_drift_negatives(identity: SubjectIdentity, max_negatives: int = 15) -> List[str]:
    """Hydrate *identity* and return at most *max_negatives* negatives."""
    pair = build_locked_identity_prompt_pair(hydrate_identity(identity))
    return pair.negative[:max_negatives]
