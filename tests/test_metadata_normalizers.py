import json

import pytest

from dna_prompt_suite.metadata_normalizers import (
    calculate_completeness,
    normalize_array,
    normalize_confidence,
    normalize_face_geometry,
    normalize_hair_specifics,
    normalize_identity,
    normalize_metadata,
    normalize_string,
    parse_metadata_json,
)
from dna_prompt_suite.metadata_schema import ImageMetadata


@pytest.mark.parametrize("val", [None, "None", "none", 42, 3.5, True, False, {"a": 1}, ["x"]])
def test_normalize_string_rejects_non_strings_and_sentinels(val):
    assert normalize_string(val) == ""


def test_normalize_string_keeps_text_and_whitespace():
    assert normalize_string("  soft light ") == "  soft light "
    assert normalize_string("NONE") == "NONE"


def test_normalize_array_filters_and_stringifies():
    assert normalize_array(["a", None, "None", "none", 1, 2.0, True]) == ["a", "1", "2", "true"]


@pytest.mark.parametrize("val", [None, "a,b", {"a": 1}, 7])
def test_normalize_array_non_list_is_empty(val):
    assert normalize_array(val) == []


def test_normalize_metadata_empty_input_is_total():
    md = normalize_metadata({})
    assert md == ImageMetadata()
    assert md.meta.intent == ""
    assert md.scene.elements == []
    assert md.subject.identity is None


@pytest.mark.parametrize("raw", [None, "text", 12, ["a"]])
def test_normalize_metadata_non_mapping(raw):
    assert normalize_metadata(raw) == ImageMetadata()


def test_normalize_metadata_wrong_section_types():
    md = normalize_metadata({
        "meta": ["not", "a", "dict"],
        "scene": {"setting": 5, "elements": "pillars"},
        "palette": {"colors": ["#fff", None], "mood": None},
        "negative": "None",
    })
    assert md.meta.intent == ""
    assert md.scene.setting == ""
    assert md.scene.elements == []
    assert md.palette.colors == ["#fff"]
    assert md.negative == ""


def test_normalize_metadata_is_idempotent(complete_metadata, identity_dict):
    raw = complete_metadata.to_dict()
    raw["subject"]["identity"] = identity_dict
    once = normalize_metadata(raw)
    assert normalize_metadata(once.to_dict()) == once
    assert normalize_metadata(once) == once


def test_identity_requires_primary_color_or_seed():
    assert normalize_identity({"texture": "silky", "species": "human"}) is None
    assert normalize_identity({"primaryColor": {"description": "None"}}) is None
    assert normalize_identity({"fixedSeed": "ember-haired sky pilot"}).fixed_seed == "ember-haired sky pilot"


def test_identity_optional_blocks(identity_dict):
    ident = normalize_identity(identity_dict)
    assert ident.face_geometry.face_shape == "oval"
    assert ident.face_geometry.nose_shape == ""
    assert ident.hair_specifics.hair_part == "center"
    assert ident.identity_negatives == ["brown eyes", "short hair"]
    assert ident.confidence.overall == pytest.approx(0.85)


def test_identity_empty_negatives_dropped(identity_dict):
    identity_dict["identityNegatives"] = ["None", None]
    assert normalize_identity(identity_dict).identity_negatives is None


def test_face_geometry_and_hair_need_a_value():
    assert normalize_face_geometry({"faceShape": "", "eyeShape": "None"}) is None
    assert normalize_hair_specifics({"hairLength": None}) is None
    assert normalize_hair_specifics("long") is None


def test_confidence_clamps_and_parses():
    conf = normalize_confidence({
        "overall": "0.7 approx",
        "primaryColor": 1.4,
        "secondaryColor": -2,
        "accentColor": "high",
        "faceGeometry": True,
    })
    assert conf.overall == pytest.approx(0.7)
    assert conf.primary_color == 1.0
    assert conf.secondary_color == 0.0
    assert conf.accent_color == 0.0
    assert conf.face_geometry == 0.0


def test_confidence_dropped_when_overall_zero():
    assert normalize_confidence({"overall": 0, "primaryColor": 0.9}) is None
    assert normalize_confidence({"overall": "n/a"}) is None


def test_parse_metadata_json_lenient():
    assert parse_metadata_json("not json") == ImageMetadata()
    assert parse_metadata_json("") == ImageMetadata()
    assert parse_metadata_json("[]") == ImageMetadata()
    fenced = '```json\n[{"meta": {"intent": "poster"}}, {"meta": {"intent": "other"}}]\n```'
    assert parse_metadata_json(fenced).meta.intent == "poster"


def test_completeness(complete_metadata):
    assert calculate_completeness(ImageMetadata()) == 0
    # 16 of 18 scalars (no overlay/style) and all 4 lists
    assert calculate_completeness(complete_metadata) == round(20 / 22 * 100)


def test_confidence_huge_integers_clamp_by_sign():
    huge = "9" * 400
    raw = json.loads(
        '{"subject": {"identity": {"fixedSeed": "x", "confidence": '
        '{"overall": ' + huge + ', "faceGeometry": -' + huge + '}}}}'
    )
    conf = normalize_metadata(raw).subject.identity.confidence
    assert conf.overall == 1.0
    assert conf.face_geometry == 0.0


def test_parse_metadata_json_survives_huge_score():
    text = '{"subject": {"identity": {"fixedSeed": "x", "confidence": {"overall": 0.5, "hairSpecifics": ' + "9" * 400 + '}}}}'
    assert parse_metadata_json(text).subject.identity.confidence.hair_specifics == 1.0
