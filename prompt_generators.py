"""
Prompt Generators
─────────────────
Render `ImageMetadata` into text-to-image prompts.

  • Universal – every enabled field, comma-separated, ``--neg`` block.
  • SD / MJ  – position-weighted slots, lowercase, max 8 segments,
               ``--no`` and ``--ar`` parameters.

Both renderings are pure functions of (metadata, section toggles).
"""

import dataclasses
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

from .color_utils import format_color_palette, format_color_with_modifier
from .hydrate_identity import build_locked_identity_prompt_pair, get_drift_negatives, hydrate_identity
from .metadata_schema import ImageMetadata, SubjectIdentity

FORMAT_UNIVERSAL = "universal"
FORMAT_SDMJ = "sd-mj"
EXPORT_FORMATS = [FORMAT_UNIVERSAL, FORMAT_SDMJ]

MAX_SDMJ_SEGMENTS = 8
MAX_SDMJ_NEGATIVES = 8
MAX_SECONDARY_STYLES = 3
MAX_USER_NEGATIVES = 5
MAX_DRIFT_NEGATIVES = 7
MAX_IDENTITY_NEGATIVES = 12

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_FLAG_STRINGS = {"true": True, "false": False}


# ---------------------------------------------------------------------------
# Section toggles
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class UniversalSections:
    meta: bool = True
    subject: bool = True
    scene: bool = True
    technical: bool = True
    palette: bool = True
    details: bool = True
    text_content: bool = False   # usually empty
    negative: bool = True


@dataclass(frozen=True)
class SDMJSections:
    subject: bool = True            # slot 1
    style_anchor: bool = True       # slot 2: "in the style of …"
    color_palette: bool = True      # slot 3: "dark x and light y"
    secondary_styles: bool = True   # slots 4-6
    technical: bool = True          # slots 7+
    negative: bool = True           # --no


Sections = Union[UniversalSections, SDMJSections]

DEFAULT_UNIVERSAL_SECTIONS = UniversalSections()
DEFAULT_SDMJ_SECTIONS = SDMJSections()


def resolve_sections(defaults: Sections, overrides: Union[Sections, Mapping[str, Any], None] = None) -> Sections:
    """
    Merge *overrides* onto *defaults* and return a new toggle set.

    Overrides may be a toggle dataclass or a partial mapping with
    snake_case or camelCase keys (``textContent``). Unknown keys are ignored.
    """
    if overrides is None:
        return defaults
    if isinstance(overrides, type(defaults)):
        return overrides
    if dataclasses.is_dataclass(overrides):
        overrides = dataclasses.asdict(overrides)
    if not isinstance(overrides, Mapping):
        return defaults

    known = {f.name for f in dataclasses.fields(defaults)}
    changes = {}
    for key, value in overrides.items():
        name = _CAMEL_BOUNDARY.sub("_", str(key)).lower()
        flag = _as_flag(value)
        if name in known and flag is not None:
            changes[name] = flag
    return dataclasses.replace(defaults, **changes)


def _as_flag(value: Any) -> Optional[bool]:
    """Real booleans and "true"/"false" strings; anything else is ignored."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _FLAG_STRINGS.get(value.strip().lower())
    return None


@dataclass
class ExportOptions:
    format: str = FORMAT_UNIVERSAL
    universal_sections: Union[UniversalSections, Mapping[str, Any], None] = None
    sdmj_sections: Union[SDMJSections, Mapping[str, Any], None] = None


def get_default_export_options(format: str = FORMAT_UNIVERSAL) -> ExportOptions:
    return ExportOptions(
        format=format,
        universal_sections=DEFAULT_UNIVERSAL_SECTIONS,
        sdmj_sections=DEFAULT_SDMJ_SECTIONS,
    )


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------
def build_identity_lock(identity: Optional[SubjectIdentity]) -> str:
    """``[IDENTITY: …]`` clause from the identity's positive phrases."""
    if identity is None:
        return ""
    pair = build_locked_identity_prompt_pair(hydrate_identity(identity))
    if not pair.positive:
        return ""
    return f"[IDENTITY: {', '.join(pair.positive)}]"


def get_identity_negatives(identity: Optional[SubjectIdentity]) -> List[str]:
    """Up to 5 user negatives then up to 7 drift negatives, de-duplicated."""
    if identity is None:
        return []

    user = list(identity.identity_negatives or [])[:MAX_USER_NEGATIVES]
    drift_only = dataclasses.replace(identity, identity_negatives=None)
    drift = get_drift_negatives(drift_only, MAX_DRIFT_NEGATIVES)

    combined: List[str] = []
    for term in user + drift:
        if term and term not in combined:
            combined.append(term)
    return combined[:MAX_IDENTITY_NEGATIVES]


def _options_sections(options: Optional[ExportOptions], attr: str, defaults: Sections) -> Sections:
    if options is None:
        return defaults
    return resolve_sections(defaults, getattr(options, attr, None))


# ---------------------------------------------------------------------------
# Universal
# ---------------------------------------------------------------------------
def generate_universal_prompt(data: ImageMetadata, options: Optional[ExportOptions] = None) -> str:
    """Structured comma-separated prompt covering every enabled field."""
    sections = _options_sections(options, "universal_sections", DEFAULT_UNIVERSAL_SECTIONS)
    parts: List[str] = []

    if sections.meta:
        parts.append(data.meta.intent)
        parts.append(data.meta.quality)
        if data.meta.aspect_ratio:
            parts.append(f"{data.meta.aspect_ratio} aspect ratio")

    if sections.subject:
        parts.append(data.subject.archetype)
        parts.append(data.subject.description)
        parts.append(build_identity_lock(data.subject.identity))
        parts.append(data.subject.expression)
        parts.append(data.subject.pose)
        parts.append(data.subject.attire)

    if sections.scene:
        parts.append(data.scene.setting)
        parts.append(", ".join(e for e in data.scene.elements if e))
        parts.append(data.scene.atmosphere)

    if sections.technical:
        parts.append(data.technical.shot)
        if data.technical.lens:
            parts.append(f"shot with {data.technical.lens}")
        parts.append(data.technical.lighting)
        parts.append(data.technical.render)

    if sections.palette:
        parts.append(data.palette.mood)
        if data.palette.colors:
            names = [format_color_with_modifier(c) for c in data.palette.colors]
            parts.append(f"color palette: {', '.join(names)}")

    if sections.details:
        parts.append(", ".join(t for t in data.details.textures if t))
        parts.append(", ".join(a for a in data.details.accents if a))

    if sections.text_content:
        overlay = data.text_content.overlay
        if overlay and overlay not in ("None", "none"):
            text_part = f'text: "{overlay}"'
            if data.text_content.style:
                text_part += f" in {data.text_content.style} font"
            parts.append(text_part)

    prompt = ", ".join(p for p in parts if p)

    if sections.negative:
        neg_parts: List[str] = []
        if data.negative:
            neg_parts.append(data.negative)
        identity_negs = get_identity_negatives(data.subject.identity)
        if identity_negs:
            neg_parts.append(", ".join(identity_negs))
        if neg_parts:
            block = f"--neg {', '.join(neg_parts)}"
            prompt = f"{prompt}\n\n{block}" if prompt else block

    return prompt


# ---------------------------------------------------------------------------
# SD / MJ
# ---------------------------------------------------------------------------
def generate_sdmj_prompt(data: ImageMetadata, options: Optional[ExportOptions] = None) -> str:
    """
    Position-weighted prompt. Leftmost segments carry the most weight:

      1  subject clause, literal, no style words
      2  "in the style of <render>", exactly once
      3  two-color palette
      4-6 up to three secondary style terms
      7+ shot, lens
    """
    sections = _options_sections(options, "sdmj_sections", DEFAULT_SDMJ_SECTIONS)
    parts: List[str] = []

    if sections.subject:
        subject = [
            data.subject.archetype,
            build_identity_lock(data.subject.identity),
            data.subject.description,
            data.subject.pose,
            data.subject.attire,
            f"in {data.scene.setting}" if data.scene.setting else "",
        ]
        clause = " ".join(s for s in subject if s)
        if clause:
            parts.append(clause)

    if sections.style_anchor and data.technical.render:
        parts.append(f"in the style of {data.technical.render}")

    if sections.color_palette and len(data.palette.colors) >= 2:
        palette = format_color_palette(data.palette.colors)
        if palette:
            parts.append(palette)

    if sections.secondary_styles:
        secondaries = list(data.details.textures[:2])
        secondaries.append(data.scene.atmosphere)
        secondaries.append(data.palette.mood)
        secondaries.extend(data.details.accents[:1])
        parts.extend([s for s in secondaries if s][:MAX_SECONDARY_STYLES])

    if sections.technical:
        parts.append(data.technical.shot)
        parts.append(data.technical.lens)

    segments = [p for p in parts if p][:MAX_SDMJ_SEGMENTS]
    prompt = ", ".join(segments).lower()

    if sections.negative:
        terms = [t.strip() for t in data.negative.split(",")] if data.negative else []
        terms.extend(get_identity_negatives(data.subject.identity))
        unique: List[str] = []
        for term in terms:
            if term and term not in unique:
                unique.append(term)
        if unique:
            prompt += f" --no {', '.join(unique[:MAX_SDMJ_NEGATIVES])}"

    if data.meta.aspect_ratio:
        prompt += f" --ar {data.meta.aspect_ratio}"

    return prompt.strip()


# Older names, same function
generate_sd_prompt = generate_sdmj_prompt
generate_mj_prompt = generate_sdmj_prompt


def generate_prompt(data: ImageMetadata, options: Optional[ExportOptions] = None) -> str:
    """Render *data* in ``options.format`` (universal by default)."""
    fmt = options.format if options is not None else FORMAT_UNIVERSAL
    if fmt == FORMAT_SDMJ:
        return generate_sdmj_prompt(data, options)
    return generate_universal_prompt(data, options)
