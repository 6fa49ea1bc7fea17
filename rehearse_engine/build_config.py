import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class TestStep:
    __test__ = False  # not a pytest class

    name: str  # the `as` field
    commands: Optional[str] = None
    container: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)  # openshift_installer, secret, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["as"] = self.name
        if self.commands is not None:
            data["commands"] = self.commands
        if self.container:
            data["container"] = dict(self.container)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TestStep':
        if not isinstance(data, dict) or not data.get("as"):
            raise ValueError(f"test step must be a mapping with an 'as' field. Found: {data}")
        return cls(
            name=str(data["as"]),
            commands=data.get("commands"),
            container=dict(data.get("container") or {}),
            extra={k: v for k, v in data.items() if k not in ("as", "commands", "container")},
        )


@dataclass
class PromotionConfig:
    namespace: str = ""
    name: str = ""
    disabled: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.namespace:
            data["namespace"] = self.namespace
        if self.name:
            data["name"] = self.name
        if self.disabled:
            data["disabled"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PromotionConfig':
        if not isinstance(data, dict):
            raise ValueError(f"promotion configuration must be a mapping. Found type: {type(data).__name__}")
        return cls(
            namespace=data.get("namespace", ""),
            name=data.get("name", ""),
            disabled=bool(data.get("disabled", False)),
            extra={k: v for k, v in data.items() if k not in ("namespace", "name", "disabled")},
        )


@dataclass
class BuildConfig:
    """A ci-operator build configuration. Compared structurally, never textually."""
    tests: List[TestStep] = field(default_factory=list)
    promotion: Optional[PromotionConfig] = None
    tag_specification: Optional[PromotionConfig] = None
    images: List[Dict[str, Any]] = field(default_factory=list)
    fields: Dict[str, Any] = field(default_factory=dict)  # build_root, resources, base_images, ...

    def to_dict(self) -> dict:
        data = dict(self.fields)
        if self.images:
            data["images"] = list(self.images)
        if self.promotion is not None:
            data["promotion"] = self.promotion.to_dict()
        if self.tag_specification is not None:
            data["tag_specification"] = self.tag_specification.to_dict()
        if self.tests:
            data["tests"] = [t.to_dict() for t in self.tests]
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)

    def without_tests(self) -> 'BuildConfig':
        return dataclasses.replace(self, tests=[])

    def test_steps(self) -> Dict[str, TestStep]:
        return {t.name: t for t in self.tests}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuildConfig':
        if not isinstance(data, dict):
            raise ValueError(f"build config must be a mapping. Found type: {type(data).__name__}")

        tests = [TestStep.from_dict(t) for t in data.get("tests") or []]
        seen = set()
        for test in tests:
            if test.name in seen:
                raise ValueError(f"test step name '{test.name}' is used more than once")
            seen.add(test.name)

        promotion = data.get("promotion")
        tag_spec = data.get("tag_specification")
        images = data.get("images") or []
        if not isinstance(images, list):
            raise ValueError(f"'images' must be a list. Found type: {type(images).__name__}")

        return cls(
            tests=tests,
            promotion=PromotionConfig.from_dict(promotion) if promotion is not None else None,
            tag_specification=PromotionConfig.from_dict(tag_spec) if tag_spec is not None else None,
            images=images,
            fields={k: v for k, v in data.items()
                    if k not in ("tests", "promotion", "tag_specification", "images")},
        )

    @classmethod
    def from_yaml(cls, raw_yaml_content: str) -> 'BuildConfig':
        return cls.from_dict(yaml.safe_load(raw_yaml_content) or {})
