from __future__ import annotations

import pytest
import yaml

from rehearse_engine.build_config import BuildConfig

CONFIG_YAML = """
build_root:
  image_stream_tag:
    name: release
    namespace: openshift
    tag: golang-1.10
images:
- from: base
  to: installer
promotion:
  namespace: ocp
  name: "4.0"
tests:
- as: unit
  commands: make test
  container:
    from: src
- as: e2e-aws
  commands: TEST_SUITE=openshift/conformance run-tests
  openshift_installer:
    cluster_profile: aws
"""


def test_from_yaml_splits_tests_from_other_fields() -> None:
    config = BuildConfig.from_yaml(CONFIG_YAML)
    assert [t.name for t in config.tests] == ["unit", "e2e-aws"]
    assert config.tests[1].extra == {"openshift_installer": {"cluster_profile": "aws"}}
    assert config.promotion.namespace == "ocp"
    assert set(config.fields) == {"build_root"}


def test_to_yaml_preserves_content() -> None:
    config = BuildConfig.from_yaml(CONFIG_YAML)
    assert yaml.safe_load(config.to_yaml()) == yaml.safe_load(CONFIG_YAML)
    assert BuildConfig.from_yaml(config.to_yaml()) == config


def test_key_order_and_formatting_do_not_matter() -> None:
    reordered = """
tests:
- commands: make test
  as: unit
  container: {from: src}
- {as: e2e-aws, commands: 'TEST_SUITE=openshift/conformance run-tests', openshift_installer: {cluster_profile: aws}}
promotion: {name: '4.0', namespace: ocp}
images: [{to: installer, from: base}]
build_root: {image_stream_tag: {tag: golang-1.10, namespace: openshift, name: release}}
"""
    assert BuildConfig.from_yaml(reordered) == BuildConfig.from_yaml(CONFIG_YAML)


def test_without_tests_leaves_source_untouched() -> None:
    config = BuildConfig.from_yaml(CONFIG_YAML)
    stripped = config.without_tests()
    assert stripped.tests == []
    assert len(config.tests) == 2
    assert stripped.fields == config.fields


def test_duplicate_test_names_are_rejected() -> None:
    with pytest.raises(ValueError, match="used more than once"):
        BuildConfig.from_dict({"tests": [{"as": "unit"}, {"as": "unit", "commands": "true"}]})


@pytest.mark.parametrize(
    "data",
    [
        ["tests"],
        {"tests": [{"commands": "make"}]},
        {"images": {"from": "base"}},
        {"promotion": "ocp"},
    ],
)
def test_malformed_build_configs_are_rejected(data) -> None:
    with pytest.raises(ValueError):
        BuildConfig.from_dict(data)


def test_empty_document_is_an_empty_config() -> None:
    assert BuildConfig.from_yaml("") == BuildConfig()
