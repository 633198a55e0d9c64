"""
Character DNA Schema
────────────────────
Typed records for the image analysis schema returned by the vision model.

All string fields default to "" and all list fields to [] so consumers can
treat the schema as total. Optional identity sub-structures are `None` when
they carry no data.

Wire format (``to_dict``) keeps the JSON keys the model emits: snake_case for
the top-level sections, camelCase inside ``subject.identity``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Subject identity ("Character DNA")
# ---------------------------------------------------------------------------
@dataclass
class IdentityColor:
    description: str = ""   # "deep emerald green with amber flecks"
    hex: str = ""           # "#2E8B57"

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "hex": self.hex}


@dataclass
class FaceGeometry:
    face_shape: str = ""    # heart-shaped, oval, square, round, diamond, oblong
    eye_shape: str = ""     # almond, round, hooded, monolid, deep-set, upturned
    brow_style: str = ""    # natural arch, straight, S-shaped, rounded, angled
    nose_shape: str = ""    # straight bridge, button, aquiline, snub, wide
    lip_shape: str = ""     # full, thin, cupid's bow, wide, heart-shaped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faceShape": self.face_shape,
            "eyeShape": self.eye_shape,
            "browStyle": self.brow_style,
            "noseShape": self.nose_shape,
            "lipShape": self.lip_shape,
        }


@dataclass
class HairSpecifics:
    hair_length: str = ""   # pixie, short, chin-length, shoulder, mid-back, waist
    hair_wave: str = ""     # pin-straight, straight, wavy, curly, coily, kinky
    hair_part: str = ""     # center, left, right, none, deep-side

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hairLength": self.hair_length,
            "hairWave": self.hair_wave,
            "hairPart": self.hair_part,
        }


@dataclass
class DNAConfidence:
    """Extraction confidence scores, each in [0, 1]."""

    overall: float = 0.0
    primary_color: float = 0.0
    secondary_color: float = 0.0
    accent_color: float = 0.0
    face_geometry: float = 0.0
    hair_specifics: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "primaryColor": self.primary_color,
            "secondaryColor": self.secondary_color,
            "accentColor": self.accent_color,
            "faceGeometry": self.face_geometry,
            "hairSpecifics": self.hair_specifics,
        }


@dataclass
class SubjectIdentity:
    """
    Character DNA for consistent reproduction of one subject.

    Color slots adapt to the subject type:
      Human  → eyes / skin / hair
      Animal → eyes / fur base / markings
      Robot  → sensors / chassis / trim
    """

    primary_color: IdentityColor = field(default_factory=IdentityColor)
    secondary_color: IdentityColor = field(default_factory=IdentityColor)
    accent_color: IdentityColor = field(default_factory=IdentityColor)
    texture: str = ""
    structure: str = ""
    distinguishing_features: List[str] = field(default_factory=list)
    estimated_age: str = ""
    species: str = ""
    fixed_seed: str = ""
    face_geometry: Optional[FaceGeometry] = None
    hair_specifics: Optional[HairSpecifics] = None
    identity_negatives: Optional[List[str]] = None
    confidence: Optional[DNAConfidence] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "primaryColor": self.primary_color.to_dict(),
            "secondaryColor": self.secondary_color.to_dict(),
            "accentColor": self.accent_color.to_dict(),
            "texture": self.texture,
            "structure": self.structure,
            "distinguishingFeatures": list(self.distinguishing_features),
            "estimatedAge": self.estimated_age,
            "species": self.species,
            "fixedSeed": self.fixed_seed,
        }
        if self.face_geometry is not None:
            out["faceGeometry"] = self.face_geometry.to_dict()
        if self.hair_specifics is not None:
            out["hairSpecifics"] = self.hair_specifics.to_dict()
        if self.identity_negatives:
            out["identityNegatives"] = list(self.identity_negatives)
        if self.confidence is not None:
            out["confidence"] = self.confidence.to_dict()
        return out


# ---------------------------------------------------------------------------
# Image metadata sections
# ---------------------------------------------------------------------------
@dataclass
class MetaSection:
    intent: str = ""
    aspect_ratio: str = ""
    quality: str = ""


@dataclass
class SubjectSection:
    archetype: str = ""
    description: str = ""
    expression: str = ""
    pose: str = ""
    attire: str = ""
    identity: Optional[SubjectIdentity] = None


@dataclass
class SceneSection:
    setting: str = ""
    atmosphere: str = ""
    elements: List[str] = field(default_factory=list)


@dataclass
class TechnicalSection:
    shot: str = ""
    lens: str = ""
    lighting: str = ""
    render: str = ""


@dataclass
class PaletteSection:
    colors: List[str] = field(default_factory=list)
    mood: str = ""


@dataclass
class DetailsSection:
    textures: List[str] = field(default_factory=list)
    accents: List[str] = field(default_factory=list)


@dataclass
class TextContentSection:
    overlay: str = ""
    style: str = ""


@dataclass
class ImageMetadata:
    """Canonical normalized analysis record."""

    meta: MetaSection = field(default_factory=MetaSection)
    subject: SubjectSection = field(default_factory=SubjectSection)
    scene: SceneSection = field(default_factory=SceneSection)
    technical: TechnicalSection = field(default_factory=TechnicalSection)
    palette: PaletteSection = field(default_factory=PaletteSection)
    details: DetailsSection = field(default_factory=DetailsSection)
    negative: str = ""
    text_content: TextContentSection = field(default_factory=TextContentSection)

    def to_dict(self) -> Dict[str, Any]:
        subject: Dict[str, Any] = {
            "archetype": self.subject.archetype,
            "description": self.subject.description,
            "expression": self.subject.expression,
            "pose": self.subject.pose,
            "attire": self.subject.attire,
        }
        if self.subject.identity is not None:
            subject["identity"] = self.subject.identity.to_dict()

        return {
            "meta": {
                "intent": self.meta.intent,
                "aspect_ratio": self.meta.aspect_ratio,
                "quality": self.meta.quality,
            },
            "subject": subject,
            "scene": {
                "setting": self.scene.setting,
                "atmosphere": self.scene.atmosphere,
                "elements": list(self.scene.elements),
            },
            "technical": {
                "shot": self.technical.shot,
                "lens": self.technical.lens,
                "lighting": self.technical.lighting,
                "render": self.technical.render,
            },
            "palette": {
                "colors": list(self.palette.colors),
                "mood": self.palette.mood,
            },
            "details": {
                "textures": list(self.details.textures),
                "accents": list(self.details.accents),
            },
            "negative": self.negative,
            "text_content": {
                "overlay": self.text_content.overlay,
                "style": self.text_content.style,
            },
        }


# ---------------------------------------------------------------------------
# Reference image labels
# ---------------------------------------------------------------------------
IMAGE_LABEL_OPTIONS = {
    "general": "General Reference",
    "style": "Style Reference",
    "composition": "Composition Reference",
    "color": "Color Reference",
    "subject": "Subject Reference",
    "texture": "Texture Reference",
    "lighting": "Lighting Reference",
}


@dataclass(frozen=True)
class ImageLabel:
    """What a reference image should contribute to the analysis."""

    type: str = "general"
    custom: str = ""

    @property
    def text(self) -> str:
        if self.custom.strip():
            return self.custom.strip()
        return IMAGE_LABEL_OPTIONS.get(self.type, IMAGE_LABEL_OPTIONS["general"])


# ---------------------------------------------------------------------------
# Analysis call results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MJCompilerResult:
    positive: str
    negative: str = ""


@dataclass(frozen=True)
class AnalysisResult:
    metadata: ImageMetadata
    description: str
    mj_prompt: Optional[MJCompilerResult] = None
