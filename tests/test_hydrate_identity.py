from dna_prompt_suite.drift_maps import DEFAULT_NEGATIVES
from dna_prompt_suite.hydrate_identity import (
    Locked,
    build_locked_identity_prompt_pair,
    get_drift_negatives,
    hydrate_identity,
)
from dna_prompt_suite.metadata_normalizers import normalize_identity
from dna_prompt_suite.metadata_schema import IdentityColor, SubjectIdentity


def test_hydrate_locks_colors_by_slot(identity_dict):
    locked = hydrate_identity(normalize_identity(identity_dict))
    assert locked.primary_color.value.description == "violet"
    assert locked.primary_color.avoid == ("blue", "purple", "lavender")
    assert locked.secondary_color.avoid == ("tan", "dark", "olive")     # "porcelain" declared first
    assert locked.accent_color.avoid == ("brown", "dark brown", "grey")  # "black"
    assert locked.texture == Locked("silky", ("coarse", "rough", "wiry"))
    assert locked.structure.avoid == ("stocky", "muscular", "heavy")


def test_hydrate_passes_through_non_lockable(identity_dict):
    identity = normalize_identity(identity_dict)
    locked = hydrate_identity(identity)
    assert locked.species == "human"
    assert locked.estimated_age == "early 20s"
    assert locked.fixed_seed == "violet-eyed moonlit wanderer"
    assert locked.identity_negatives == ("brown eyes", "short hair")
    assert locked.confidence is identity.confidence
    assert locked.face_geometry.eye_shape.avoid == ("round", "wide", "narrow")
    assert locked.face_geometry.nose_shape == Locked("", DEFAULT_NEGATIVES)
    assert locked.hair_specifics.hair_wave.avoid == ("straight", "curly", "coiled")


def test_locked_wire_form(identity_dict):
    wire = hydrate_identity(normalize_identity(identity_dict)).to_dict()
    assert wire["primaryColor"] == {
        "is": {"description": "violet", "hex": "#8F00FF"},
        "not": ["blue", "purple", "lavender"],
    }
    assert wire["hairSpecifics"]["hairPart"] == {"is": "center", "not": ["side", "left", "right"]}
    assert wire["identityNegatives"] == ["brown eyes", "short hair"]


def test_prompt_pair_order(identity_dict):
    pair = build_locked_identity_prompt_pair(hydrate_identity(normalize_identity(identity_dict)))
    assert pair.positive == [
        "human",
        "early 20s",
        "oval face",
        "almond eyes",
        "violet eyes",
        "pale porcelain skin",
        "waist-length wavy jet black hair parted center",
        "slender build",
        "beauty mark under left eye, silver nose ring, freckles",
        '"violet-eyed moonlit wanderer"',
    ]


def test_prompt_pair_negatives_deduplicated(identity_dict):
    pair = build_locked_identity_prompt_pair(hydrate_identity(normalize_identity(identity_dict)))
    assert len(pair.negative) == len(set(pair.negative))
    # face shape first, user negatives last
    assert pair.negative[:3] == ["round", "oblong", "angular"]
    assert pair.negative[-2:] == ["brown eyes", "short hair"]
    # texture is not emitted when hair specifics exist
    assert "wiry" not in pair.negative


def test_hair_part_none_is_omitted():
    identity = normalize_identity({
        "primaryColor": {"description": "green"},
        "accentColor": {"description": "auburn"},
        "hairSpecifics": {"hairLength": "short", "hairPart": "none"},
    })
    pair = build_locked_identity_prompt_pair(hydrate_identity(identity))
    assert "short auburn hair" in pair.positive
    assert "parted" not in " ".join(pair.positive)
    assert "center part" not in pair.negative


def test_texture_falls_back_as_hair_clause_once():
    identity = SubjectIdentity(primary_color=IdentityColor("hazel"), texture="fluffy", structure="petite")
    pair = build_locked_identity_prompt_pair(hydrate_identity(identity))
    assert pair.positive == ["hazel eyes", "fluffy", "petite build"]
    assert pair.negative.count("flat") == 1


def test_get_drift_negatives_caps(identity_dict):
    identity = normalize_identity(identity_dict)
    assert len(get_drift_negatives(identity)) == 15
    assert get_drift_negatives(identity, 4) == ["round", "oblong", "angular", "wide"]


def test_minimal_identity_without_optional_blocks():
    identity = SubjectIdentity(fixed_seed="quiet copper automaton")
    pair = build_locked_identity_prompt_pair(hydrate_identity(identity))
    assert pair.positive == ['"quiet copper automaton"']
    assert pair.negative == []
