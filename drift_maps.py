"""
Drift Maps
──────────
Lookup tables of "what a generator typically drifts to" for each identity
attribute. Locking an attribute means asserting its value AND negating the
three most likely wrong values, e.g. ``violet eyes`` + ``--no blue eyes``.

Keys are lowercase; each value is an ordered triple of alternatives.
Tables are read-only and their declaration order matters for partial
matching (the first declared key that matches wins).
"""

import re
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

Negatives = Tuple[str, str, str]
DriftMap = Mapping[str, Negatives]

DEFAULT_NEGATIVES: Negatives = ("different", "changed", "altered")

_WORD_SPLIT = re.compile(r"[\s-]+")


class DriftCategory(str, Enum):
    EYE_COLOR = "eyeColor"
    EYE_SHAPE = "eyeShape"
    FACE_SHAPE = "faceShape"
    BROW_STYLE = "browStyle"
    NOSE_SHAPE = "noseShape"
    LIP_SHAPE = "lipShape"
    HAIR_LENGTH = "hairLength"
    HAIR_WAVE = "hairWave"
    HAIR_PART = "hairPart"
    HAIR_COLOR = "hairColor"
    SKIN_TONE = "skinTone"
    STRUCTURE = "structure"
    TEXTURE = "texture"


# Identity slot names that map onto a table
CATEGORY_ALIASES = MappingProxyType({
    "primaryColor": DriftCategory.EYE_COLOR,
    "secondaryColor": DriftCategory.SKIN_TONE,
    "accentColor": DriftCategory.HAIR_COLOR,
    "bodyBuild": DriftCategory.STRUCTURE,
})


def _table(entries) -> DriftMap:
    return MappingProxyType(dict(entries))


# ═══════════════════════════════════════════════════════════════════════════
#  Eyes
# ═══════════════════════════════════════════════════════════════════════════
EYE_COLOR_DRIFT = _table([
    ("violet", ("blue", "purple", "lavender")),
    ("blue", ("grey", "teal", "green")),
    ("green", ("teal", "hazel", "blue")),
    ("hazel", ("brown", "green", "amber")),
    ("brown", ("black", "amber", "dark")),
    ("amber", ("brown", "orange", "golden")),
    ("grey", ("blue", "silver", "pale")),
    ("gray", ("blue", "silver", "pale")),
    ("black", ("dark brown", "deep", "hollow")),
    ("red", ("crimson", "pink", "burgundy")),
    ("gold", ("amber", "yellow", "orange")),
    ("golden", ("amber", "yellow", "brown")),
    ("silver", ("grey", "white", "pale")),
    ("teal", ("blue", "green", "aqua")),
    ("aqua", ("blue", "teal", "cyan")),
    ("heterochromia", ("matching eyes", "same color", "uniform")),
])

EYE_SHAPE_DRIFT = _table([
    ("almond", ("round", "wide", "narrow")),
    ("round", ("almond", "narrow", "angular")),
    ("hooded", ("wide-open", "round", "prominent")),
    ("downturned", ("upturned", "neutral", "wide")),
    ("upturned", ("downturned", "neutral", "droopy")),
    ("monolid", ("double lid", "creased", "deep-set")),
    ("deep-set", ("prominent", "bulging", "shallow")),
    ("prominent", ("deep-set", "sunken", "hooded")),
    ("wide-set", ("close-set", "narrow", "close")),
    ("close-set", ("wide-set", "far apart", "wide")),
])

# ═══════════════════════════════════════════════════════════════════════════
#  Face
# ═══════════════════════════════════════════════════════════════════════════
FACE_SHAPE_DRIFT = _table([
    ("oval", ("round", "oblong", "angular")),
    ("round", ("oval", "square", "angular")),
    ("angular", ("soft", "round", "gentle")),
    ("square", ("round", "rectangular", "oval")),
    ("heart", ("oval", "round", "triangular")),
    ("heart-shaped", ("oval", "round", "triangular")),
    ("oblong", ("oval", "rectangular", "round")),
    ("diamond", ("oval", "angular", "heart")),
    ("rectangular", ("square", "oval", "round")),
    ("triangular", ("heart", "oval", "round")),
    ("soft", ("angular", "sharp", "defined")),
])

BROW_STYLE_DRIFT = _table([
    ("natural arch", ("straight", "flat", "angular")),
    ("high arch", ("low", "straight", "flat")),
    ("straight", ("arched", "curved", "rounded")),
    ("s-shaped", ("straight", "arched", "angular")),
    ("rounded", ("angular", "straight", "sharp")),
    ("angled", ("rounded", "soft", "curved")),
    ("thick", ("thin", "sparse", "light")),
    ("thin", ("thick", "bushy", "heavy")),
    ("bushy", ("thin", "groomed", "sparse")),
])

NOSE_SHAPE_DRIFT = _table([
    ("straight", ("curved", "hooked", "upturned")),
    ("straight bridge", ("curved", "hooked", "bumpy")),
    ("button", ("long", "pointed", "aquiline")),
    ("aquiline", ("button", "snub", "flat")),
    ("snub", ("long", "pointed", "aquiline")),
    ("wide", ("narrow", "thin", "pointed")),
    ("narrow", ("wide", "broad", "flat")),
    ("roman", ("button", "flat", "snub")),
    ("upturned", ("downturned", "straight", "hooked")),
    ("hooked", ("straight", "button", "upturned")),
])

LIP_SHAPE_DRIFT = _table([
    ("full", ("thin", "narrow", "flat")),
    ("thin", ("full", "plump", "thick")),
    ("cupid's bow", ("flat", "straight", "undefined")),
    ("wide", ("narrow", "small", "thin")),
    ("heart-shaped", ("straight", "flat", "wide")),
    ("bow-shaped", ("straight", "flat", "thin")),
    ("plump", ("thin", "narrow", "flat")),
    ("natural", ("exaggerated", "enhanced", "artificial")),
])

# ═══════════════════════════════════════════════════════════════════════════
#  Hair
# ═══════════════════════════════════════════════════════════════════════════
HAIR_LENGTH_DRIFT = _table([
    ("bald", ("hair", "long hair", "short hair")),
    ("shaved", ("long", "medium", "flowing")),
    ("buzzed", ("long", "flowing", "shoulder")),
    ("cropped", ("long", "flowing", "waist")),
    ("pixie", ("long", "flowing", "shoulder-length")),
    ("short", ("long", "flowing", "waist-length")),
    ("chin-length", ("long", "short", "waist")),
    ("chin", ("long", "short", "waist")),
    ("shoulder-length", ("waist", "short", "cropped")),
    ("shoulder", ("waist", "short", "cropped")),
    ("mid-back", ("short", "cropped", "chin")),
    ("waist-length", ("short", "cropped", "pixie")),
    ("waist", ("short", "cropped", "pixie")),
    ("hip-length", ("short", "cropped", "chin")),
    ("floor-length", ("short", "medium", "shoulder")),
    ("long", ("short", "cropped", "pixie")),
])

HAIR_WAVE_DRIFT = _table([
    ("pin-straight", ("wavy", "curly", "coiled")),
    ("straight", ("wavy", "curly", "kinky")),
    ("slightly wavy", ("straight", "curly", "coiled")),
    ("wavy", ("straight", "curly", "coiled")),
    ("loose waves", ("straight", "tight curls", "coiled")),
    ("curly", ("straight", "wavy", "pin-straight")),
    ("tight curls", ("loose", "wavy", "straight")),
    ("coily", ("straight", "wavy", "loose")),
    ("coiled", ("straight", "wavy", "loose")),
    ("kinky", ("straight", "wavy", "loose waves")),
    ("afro", ("straight", "wavy", "flat")),
    ("textured", ("smooth", "straight", "sleek")),
])

HAIR_PART_DRIFT = _table([
    ("center", ("side", "left", "right")),
    ("left", ("right", "center", "middle")),
    ("right", ("left", "center", "middle")),
    ("deep side", ("center", "middle", "slight")),
    ("none", ("parted", "center part", "side part")),
    ("middle", ("side", "left", "right")),
])

HAIR_COLOR_DRIFT = _table([
    ("black", ("brown", "dark brown", "grey")),
    ("dark brown", ("black", "light brown", "auburn")),
    ("brown", ("black", "blonde", "red")),
    ("light brown", ("dark brown", "blonde", "auburn")),
    ("auburn", ("brown", "red", "copper")),
    ("red", ("auburn", "orange", "brown")),
    ("ginger", ("red", "blonde", "auburn")),
    ("strawberry blonde", ("blonde", "red", "ginger")),
    ("blonde", ("brown", "dark", "black")),
    ("platinum", ("yellow blonde", "golden", "grey")),
    ("white", ("grey", "blonde", "silver")),
    ("grey", ("white", "black", "brown")),
    ("gray", ("white", "black", "brown")),
    ("silver", ("grey", "white", "blonde")),
    ("blue", ("black", "purple", "teal")),
    ("purple", ("blue", "pink", "black")),
    ("pink", ("purple", "red", "blonde")),
    ("green", ("blue", "teal", "black")),
])

# ═══════════════════════════════════════════════════════════════════════════
#  Skin, body, texture
# ═══════════════════════════════════════════════════════════════════════════
SKIN_TONE_DRIFT = _table([
    ("porcelain", ("tan", "dark", "olive")),
    ("fair", ("tan", "dark", "olive")),
    ("pale", ("tan", "dark", "medium")),
    ("light", ("dark", "tan", "deep")),
    ("medium", ("pale", "dark", "fair")),
    ("olive", ("pale", "dark", "fair")),
    ("tan", ("pale", "fair", "dark")),
    ("golden", ("pale", "cool", "ashen")),
    ("brown", ("pale", "fair", "light")),
    ("dark", ("pale", "fair", "light")),
    ("deep", ("pale", "fair", "light")),
    ("ebony", ("pale", "fair", "light")),
    ("warm", ("cool", "cold", "ashen")),
    ("cool", ("warm", "golden", "yellow")),
    ("neutral", ("warm", "cool", "extreme")),
])

BODY_STRUCTURE_DRIFT = _table([
    ("petite", ("tall", "large", "heavy")),
    ("slim", ("heavy", "muscular", "stocky")),
    ("slender", ("stocky", "muscular", "heavy")),
    ("athletic", ("overweight", "thin", "frail")),
    ("toned", ("soft", "flabby", "heavy")),
    ("average", ("extreme", "very thin", "very heavy")),
    ("curvy", ("angular", "thin", "flat")),
    ("muscular", ("thin", "frail", "soft")),
    ("stocky", ("thin", "tall", "lanky")),
    ("heavy", ("thin", "slender", "petite")),
    ("tall", ("short", "petite", "small")),
    ("short", ("tall", "lanky", "elongated")),
])

TEXTURE_DRIFT = _table([
    ("silky", ("coarse", "rough", "wiry")),
    ("smooth", ("rough", "textured", "coarse")),
    ("soft", ("coarse", "wiry", "rough")),
    ("coarse", ("silky", "smooth", "fine")),
    ("fine", ("thick", "coarse", "heavy")),
    ("thick", ("thin", "fine", "sparse")),
    ("wiry", ("silky", "soft", "smooth")),
    ("fluffy", ("flat", "sleek", "limp")),
    ("sleek", ("fluffy", "messy", "wild")),
])


DRIFT_MAPS: Mapping[DriftCategory, DriftMap] = MappingProxyType({
    DriftCategory.EYE_COLOR: EYE_COLOR_DRIFT,
    DriftCategory.EYE_SHAPE: EYE_SHAPE_DRIFT,
    DriftCategory.FACE_SHAPE: FACE_SHAPE_DRIFT,
    DriftCategory.BROW_STYLE: BROW_STYLE_DRIFT,
    DriftCategory.NOSE_SHAPE: NOSE_SHAPE_DRIFT,
    DriftCategory.LIP_SHAPE: LIP_SHAPE_DRIFT,
    DriftCategory.HAIR_LENGTH: HAIR_LENGTH_DRIFT,
    DriftCategory.HAIR_WAVE: HAIR_WAVE_DRIFT,
    DriftCategory.HAIR_PART: HAIR_PART_DRIFT,
    DriftCategory.HAIR_COLOR: HAIR_COLOR_DRIFT,
    DriftCategory.SKIN_TONE: SKIN_TONE_DRIFT,
    DriftCategory.STRUCTURE: BODY_STRUCTURE_DRIFT,
    DriftCategory.TEXTURE: TEXTURE_DRIFT,
})


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------
def resolve_category(category: Union[DriftCategory, str, None]) -> Optional[DriftCategory]:
    """Map an enum member, its string value, or an alias to a category."""
    if isinstance(category, DriftCategory):
        return category
    if not isinstance(category, str):
        return None
    if category in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[category]
    try:
        return DriftCategory(category)
    except ValueError:
        return None


def find_best_match(value: str, drift_map: DriftMap) -> Optional[Negatives]:
    normalized = value.lower().strip()

    # 1. exact
    if normalized in drift_map:
        return drift_map[normalized]

    # 2. substring either way, declaration order
    for key, negatives in drift_map.items():
        if key in normalized or normalized in key:
            return negatives

    # 3. first significant word that is itself a key
    for word in _WORD_SPLIT.split(normalized):
        if len(word) > 2 and word in drift_map:
            return drift_map[word]

    return None


def infer_negatives(category: Union[DriftCategory, str], value: str) -> Negatives:
    """
    Return the three most likely drift values for *value* in *category*.

    Unknown categories and unmatched values fall back to
    ``DEFAULT_NEGATIVES``; this never raises.
    """
    if not isinstance(value, str) or not value.strip():
        return DEFAULT_NEGATIVES

    resolved = resolve_category(category)
    if resolved is None:
        return DEFAULT_NEGATIVES

    return find_best_match(value, DRIFT_MAPS[resolved]) or DEFAULT_NEGATIVES


# ---------------------------------------------------------------------------
# Per-attribute shortcuts
# ---------------------------------------------------------------------------
def infer_eye_color_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.EYE_COLOR, value)


def infer_eye_shape_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.EYE_SHAPE, value)


def infer_face_shape_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.FACE_SHAPE, value)


def infer_brow_style_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.BROW_STYLE, value)


def infer_nose_shape_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.NOSE_SHAPE, value)


def infer_lip_shape_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.LIP_SHAPE, value)


def infer_hair_length_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.HAIR_LENGTH, value)


def infer_hair_wave_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.HAIR_WAVE, value)


def infer_hair_color_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.HAIR_COLOR, value)


def infer_skin_tone_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.SKIN_TONE, value)


def infer_structure_negatives(value: str) -> Negatives:
    return infer_negatives(DriftCategory.STRUCTURE, value)
