"""Formula model, descriptor parsing and semantic validation."""

import pydantic
import pytest

from formula_installer.core.errors import ValidationError, ValidationErrorKind
from formula_installer.models.formula import CopyArtifact, Formula, RunCommand, SetEnv, validate_formula

from tests.fakes import make_formula, swift_lambda_descriptor


def _kind_of(formula: Formula) -> ValidationErrorKind:
    with pytest.raises(ValidationError) as excinfo:
        validate_formula(formula)
    return excinfo.value.kind


# -- Descriptor parsing --------------------------------------------------------

def test_swift_lambda_descriptor_is_valid(formula):
    validate_formula(formula)
    assert formula.identity == ("swift-lambda", "0.2.0")
    assert isinstance(formula.install_steps[0], RunCommand)
    assert isinstance(formula.install_steps[1], CopyArtifact)


def test_run_command_string_is_split_like_a_shell():
    formula = make_formula(steps=[{"kind": "run_command", "argv": "make install PREFIX='{prefix}'"}])
    assert formula.steps[0].argv == ["make", "install", "PREFIX={prefix}"]


def test_step_kinds_are_discriminated():
    formula = make_formula(steps=[
        {"kind": "set_env", "name": "SWIFT_BUILD_FLAGS", "value": "-c release"},
        {"kind": "copy_artifact", "source": ".build/release/swift-lambda"},
    ])
    assert isinstance(formula.steps[0], SetEnv)
    assert formula.steps[1].target == "swift-lambda"


def test_missing_field_maps_to_missing_field():
    data = swift_lambda_descriptor()
    del data["source"]
    with pytest.raises(ValidationError) as excinfo:
        Formula.from_descriptor(data)
    assert excinfo.value.kind == ValidationErrorKind.MISSING_FIELD
    assert excinfo.value.field == "source"


def test_unknown_step_kind_is_malformed():
    with pytest.raises(ValidationError) as excinfo:
        Formula.from_descriptor(swift_lambda_descriptor(steps=[{"kind": "reboot"}]))
    assert excinfo.value.kind == ValidationErrorKind.MALFORMED_FIELD


def test_name_and_version_are_immutable(formula):
    with pytest.raises(pydantic.ValidationError):
        formula.version = "0.3.0"
    with pytest.raises(pydantic.ValidationError):
        formula.name = "other"
    assert formula.identity == ("swift-lambda", "0.2.0")


# -- Tag resolution ------------------------------------------------------------

def test_tag_defaults_to_version(formula):
    assert formula.tag == "0.2.0"


def test_tag_template_is_applied():
    formula = make_formula(source={"kind": "git", "url": "https://example.com/x.git",
                                   "tag_template": "v{version}"})
    assert formula.tag == "v0.2.0"


def test_explicit_source_tag_wins():
    formula = make_formula(source_tag="release-0.2",
                           source={"kind": "git", "url": "https://example.com/x.git",
                                   "tag_template": "v{version}"})
    assert formula.tag == "release-0.2"


# -- Semantic validation -------------------------------------------------------

@pytest.mark.parametrize("name", ["Swift-Lambda", "swift lambda", "-leading", ""])
def test_invalid_names_are_rejected(name):
    expected = ValidationErrorKind.MISSING_FIELD if not name else ValidationErrorKind.INVALID_NAME
    assert _kind_of(make_formula(name=name)) == expected


def test_empty_version_is_missing():
    assert _kind_of(make_formula(version="  ")) == ValidationErrorKind.MISSING_FIELD


def test_uncomparable_version_is_malformed():
    assert _kind_of(make_formula(version="latest")) == ValidationErrorKind.MALFORMED_VERSION


def test_uncomparable_toolchain_minimum_is_malformed():
    formula = make_formula(toolchain={"name": "xcode", "min_version": "ten"})
    assert _kind_of(formula) == ValidationErrorKind.MALFORMED_VERSION


def test_unknown_source_kind_is_unsupported():
    formula = make_formula(source={"kind": "svn", "url": "https://example.com/repo"})
    assert _kind_of(formula) == ValidationErrorKind.UNSUPPORTED_LOCATOR_KIND


def test_scheme_not_matching_kind_is_malformed_locator():
    formula = make_formula(source={"kind": "git", "url": "ftp://example.com/repo.git"})
    assert _kind_of(formula) == ValidationErrorKind.MALFORMED_LOCATOR


def test_scp_style_git_url_is_accepted():
    validate_formula(make_formula(source={"kind": "git",
                                          "url": "git@github.com:asensei/homebrew-swift-lambda.git"}))


def test_bad_tag_template_is_malformed_locator():
    formula = make_formula(source={"kind": "git", "url": "https://example.com/x.git",
                                   "tag_template": "{release}"})
    assert _kind_of(formula) == ValidationErrorKind.MALFORMED_LOCATOR


def test_formula_without_steps_is_rejected():
    assert _kind_of(make_formula(steps=[])) == ValidationErrorKind.MISSING_FIELD


@pytest.mark.parametrize("step", [
    {"kind": "copy_artifact", "source": "../../etc/passwd"},
    {"kind": "copy_artifact", "source": "swift-lambda", "destination": "/usr/local/bin/swift-lambda"},
    {"kind": "run_command", "argv": ["make"], "cwd": "../outside"},
])
def test_paths_escaping_their_root_are_rejected(step):
    assert _kind_of(make_formula(steps=[step])) == ValidationErrorKind.MALFORMED_FIELD


@pytest.mark.parametrize("overrides", [
    {"steps": [{"kind": "set_env", "name": "SWIFT=FLAGS", "value": "-c release"}]},
    {"steps": [{"kind": "set_env", "name": "", "value": "x"}]},
    {"environment": {"C C": "cc"}},
    {"toolchain": {"name": "xcode", "min_version": "10.2", "bindings": {"1CC": "cc"}}},
])
def test_invalid_environment_names_are_malformed(overrides):
    assert _kind_of(make_formula(**overrides)) == ValidationErrorKind.MALFORMED_FIELD


def test_json_schema_carries_the_example():
    assert Formula.model_json_schema()["example"]["name"] == "swift-lambda"
