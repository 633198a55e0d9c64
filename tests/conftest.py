import importlib.util
import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]
_PACKAGE = "dna_prompt_suite"

# The repository root is the package (ComfyUI custom-node layout); load it
# under its distribution name when it has not been pip-installed.
if importlib.util.find_spec(_PACKAGE) is None:
    _spec = importlib.util.spec_from_file_location(
        _PACKAGE,
        _REPO_ROOT / "__init__.py",
        submodule_search_locations=[str(_REPO_ROOT)],
    )
    _module = importlib.util.module_from_spec(_spec)
    sys.modules[_PACKAGE] = _module
    _spec.loader.exec_module(_module)


from dna_prompt_suite.metadata_normalizers import normalize_metadata  # noqa: E402


@pytest.fixture
def complete_metadata():
    return normalize_metadata({
        "meta": {"intent": "cinematic portrait", "aspect_ratio": "16:9", "quality": "masterpiece, best quality"},
        "subject": {
            "archetype": "mysterious wanderer",
            "description": "weathered face with deep eyes",
            "expression": "contemplative gaze",
            "pose": "standing tall",
            "attire": "tattered cloak and leather armor",
        },
        "scene": {
            "setting": "ancient ruins at sunset",
            "atmosphere": "ethereal and melancholic",
            "elements": ["crumbling pillars", "scattered leaves", "distant mountains"],
        },
        "technical": {
            "shot": "medium close-up",
            "lens": "85mm f/1.4",
            "lighting": "golden hour rim lighting",
            "render": "photorealistic",
        },
        "palette": {"colors": ["#8B4513", "#FFD700", "#4A4A4A"], "mood": "warm and dramatic"},
        "details": {
            "textures": ["weathered leather", "rough stone"],
            "accents": ["glowing runes", "dust particles"],
        },
        "negative": "blurry, low quality, cartoon, anime",
        "text_content": {"overlay": "None", "style": ""},
    })


@pytest.fixture
def text_overlay_metadata():
    return normalize_metadata({
        "meta": {"intent": "poster design", "aspect_ratio": "2:3", "quality": "high detail"},
        "text_content": {"overlay": "EPIC ADVENTURE", "style": "bold sans-serif"},
    })


@pytest.fixture
def many_negatives_metadata():
    return normalize_metadata({
        "meta": {"intent": "clean portrait", "aspect_ratio": "1:1", "quality": "professional"},
        "negative": (
            "blurry, low quality, cartoon, anime, watermark, text, signature, "
            "deformed, extra fingers, bad anatomy, oversaturated"
        ),
    })


@pytest.fixture
def identity_dict():
    return {
        "primaryColor": {"description": "violet", "hex": "#8F00FF"},
        "secondaryColor": {"description": "pale porcelain", "hex": "#F5E6DA"},
        "accentColor": {"description": "jet black", "hex": "#0A0A0A"},
        "texture": "silky",
        "structure": "slender",
        "distinguishingFeatures": ["beauty mark under left eye", "silver nose ring", "freckles", "scar on chin"],
        "estimatedAge": "early 20s",
        "species": "human",
        "fixedSeed": "violet-eyed moonlit wanderer",
        "faceGeometry": {"faceShape": "oval", "eyeShape": "almond"},
        "hairSpecifics": {"hairLength": "waist-length", "hairWave": "wavy", "hairPart": "center"},
        "identityNegatives": ["brown eyes", "short hair"],
        "confidence": {"overall": 0.85, "primaryColor": 0.9},
    }
