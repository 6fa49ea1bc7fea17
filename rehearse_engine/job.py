from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PRESUBMIT = "presubmit"
PERIODIC = "periodic"


def _split_extra(data: Dict[str, Any], known: tuple) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def _require_mapping(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a mapping. Found type: {type(data).__name__}")
    return data


def _string_list(value: Any, what: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list. Found type: {type(value).__name__}")
    return [str(v) for v in value]


@dataclass
class ConfigMapKeyRef:
    name: str
    key: str

    def to_dict(self) -> dict:
        return {"name": self.name, "key": self.key}


@dataclass
class EnvVarSource:
    config_map_key_ref: Optional[ConfigMapKeyRef] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # secretKeyRef, fieldRef, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.config_map_key_ref:
            data["configMapKeyRef"] = self.config_map_key_ref.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvVarSource':
        data = _require_mapping(data, "valueFrom")
        ref = data.get("configMapKeyRef")
        parsed_ref = None
        if ref is not None:
            ref = _require_mapping(ref, "configMapKeyRef")
            if not ref.get("name") or not ref.get("key"):
                raise ValueError(f"configMapKeyRef must have 'name' and 'key'. Found: {list(ref.keys())}")
            parsed_ref = ConfigMapKeyRef(name=ref["name"], key=ref["key"])
        return cls(config_map_key_ref=parsed_ref, extra=_split_extra(data, ("configMapKeyRef",)))


@dataclass
class EnvVar:
    name: str
    value: Optional[str] = None
    value_from: Optional[EnvVarSource] = None

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"name": self.name}
        if self.value is not None:
            data["value"] = self.value
        if self.value_from is not None:
            data["valueFrom"] = self.value_from.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvVar':
        data = _require_mapping(data, "env entry")
        if not data.get("name"):
            raise ValueError(f"env entry must have a 'name'. Found: {data}")
        value_from = data.get("valueFrom")
        return cls(
            name=data["name"],
            value=None if data.get("value") is None else str(data["value"]),
            value_from=EnvVarSource.from_dict(value_from) if value_from is not None else None,
        )


@dataclass
class VolumeMount:
    name: str
    mount_path: str
    sub_path: Optional[str] = None
    read_only: bool = False

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"name": self.name, "mountPath": self.mount_path}
        if self.sub_path:
            data["subPath"] = self.sub_path
        if self.read_only:
            data["readOnly"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VolumeMount':
        data = _require_mapping(data, "volumeMount")
        if "name" not in data or "mountPath" not in data:
            raise ValueError(f"volumeMount must have 'name' and 'mountPath'. Found: {list(data.keys())}")
        return cls(
            name=data["name"],
            mount_path=data["mountPath"],
            sub_path=data.get("subPath"),
            read_only=bool(data.get("readOnly", False)),
        )


@dataclass
class ConfigMapSource:
    """A ConfigMap referenced from a volume or from a projected volume source."""
    name: str
    extra: Dict[str, Any] = field(default_factory=dict)  # items, defaultMode, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConfigMapSource':
        data = _require_mapping(data, "configMap")
        if not data.get("name"):
            raise ValueError(f"configMap volume source must have a 'name'. Found: {list(data.keys())}")
        return cls(name=data["name"], extra=_split_extra(data, ("name",)))


@dataclass
class VolumeProjection:
    config_map: Optional[ConfigMapSource] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.config_map:
            data["configMap"] = self.config_map.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VolumeProjection':
        data = _require_mapping(data, "projected source")
        cm = data.get("configMap")
        return cls(
            config_map=ConfigMapSource.from_dict(cm) if cm is not None else None,
            extra=_split_extra(data, ("configMap",)),
        )


@dataclass
class Volume:
    name: str
    config_map: Optional[ConfigMapSource] = None
    projected: Optional[List[VolumeProjection]] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # secret, emptyDir, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["name"] = self.name
        if self.config_map:
            data["configMap"] = self.config_map.to_dict()
        if self.projected is not None:
            data["projected"] = {"sources": [s.to_dict() for s in self.projected]}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Volume':
        data = _require_mapping(data, "volume")
        if not data.get("name"):
            raise ValueError(f"volume must have a 'name'. Found: {list(data.keys())}")
        cm = data.get("configMap")
        projected = data.get("projected")
        sources = None
        if projected is not None:
            projected = _require_mapping(projected, "projected volume")
            sources = [VolumeProjection.from_dict(s) for s in projected.get("sources") or []]
        return cls(
            name=data["name"],
            config_map=ConfigMapSource.from_dict(cm) if cm is not None else None,
            projected=sources,
            extra=_split_extra(data, ("name", "configMap", "projected")),
        )


@dataclass
class Container:
    image: str = ""
    command: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    env: List[EnvVar] = field(default_factory=list)
    volume_mounts: List[VolumeMount] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)  # resources, imagePullPolicy, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.image:
            data["image"] = self.image
        if self.command:
            data["command"] = list(self.command)
        if self.args:
            data["args"] = list(self.args)
        if self.env:
            data["env"] = [e.to_dict() for e in self.env]
        if self.volume_mounts:
            data["volumeMounts"] = [m.to_dict() for m in self.volume_mounts]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Container':
        data = _require_mapping(data, "container")
        return cls(
            image=data.get("image", ""),
            command=_string_list(data.get("command"), "container command"),
            args=_string_list(data.get("args"), "container args"),
            env=[EnvVar.from_dict(e) for e in data.get("env") or []],
            volume_mounts=[VolumeMount.from_dict(m) for m in data.get("volumeMounts") or []],
            extra=_split_extra(data, ("image", "command", "args", "env", "volumeMounts")),
        )


@dataclass
class PodSpec:
    containers: List[Container] = field(default_factory=list)
    volumes: List[Volume] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)  # serviceAccountName, nodeSelector, ...

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data["containers"] = [c.to_dict() for c in self.containers]
        if self.volumes:
            data["volumes"] = [v.to_dict() for v in self.volumes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PodSpec':
        data = _require_mapping(data, "spec")
        return cls(
            containers=[Container.from_dict(c) for c in data.get("containers") or []],
            volumes=[Volume.from_dict(v) for v in data.get("volumes") or []],
            extra=_split_extra(data, ("containers", "volumes")),
        )

    @property
    def container(self) -> Optional[Container]:
        """The job's single container, None when the spec does not have exactly one."""
        if len(self.containers) != 1:
            return None
        return self.containers[0]


_JOB_KEYS = ("name", "agent", "spec", "labels")
_PRESUBMIT_KEYS = _JOB_KEYS + ("branches", "context", "always_run", "optional", "trigger",
                               "rerun_command", "run_if_changed")
_PERIODIC_KEYS = _JOB_KEYS + ("interval", "cron")


@dataclass
class Presubmit:
    name: str
    agent: str = "kubernetes"
    spec: Optional[PodSpec] = None
    labels: Dict[str, str] = field(default_factory=dict)
    branches: List[str] = field(default_factory=list)
    context: str = ""
    always_run: bool = False
    optional: bool = False
    trigger: str = ""
    rerun_command: str = ""
    run_if_changed: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)  # decorate, decoration_config, ...

    kind = PRESUBMIT

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({"name": self.name, "agent": self.agent})
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.branches:
            data["branches"] = list(self.branches)
        if self.context:
            data["context"] = self.context
        if self.always_run:
            data["always_run"] = True
        if self.optional:
            data["optional"] = True
        if self.trigger:
            data["trigger"] = self.trigger
        if self.rerun_command:
            data["rerun_command"] = self.rerun_command
        if self.run_if_changed:
            data["run_if_changed"] = self.run_if_changed
        if self.spec is not None:
            data["spec"] = self.spec.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Presubmit':
        data = _require_mapping(data, "presubmit")
        if not data.get("name"):
            raise ValueError(f"presubmit must have a 'name'. Found: {list(data.keys())}")
        spec = data.get("spec")
        return cls(
            name=data["name"],
            agent=data.get("agent", "kubernetes"),
            spec=PodSpec.from_dict(spec) if spec is not None else None,
            labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
            branches=_string_list(data.get("branches"), f"branches of {data['name']}"),
            context=data.get("context", ""),
            always_run=bool(data.get("always_run", False)),
            optional=bool(data.get("optional", False)),
            trigger=data.get("trigger", ""),
            rerun_command=data.get("rerun_command", ""),
            run_if_changed=data.get("run_if_changed", ""),
            extra=_split_extra(data, _PRESUBMIT_KEYS),
        )


@dataclass
class Periodic:
    name: str
    agent: str = "kubernetes"
    spec: Optional[PodSpec] = None
    labels: Dict[str, str] = field(default_factory=dict)
    interval: str = ""
    cron: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = PERIODIC

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({"name": self.name, "agent": self.agent})
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.interval:
            data["interval"] = self.interval
        if self.cron:
            data["cron"] = self.cron
        if self.spec is not None:
            data["spec"] = self.spec.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Periodic':
        data = _require_mapping(data, "periodic")
        if not data.get("name"):
            raise ValueError(f"periodic must have a 'name'. Found: {list(data.keys())}")
        spec = data.get("spec")
        return cls(
            name=data["name"],
            agent=data.get("agent", "kubernetes"),
            spec=PodSpec.from_dict(spec) if spec is not None else None,
            labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
            interval=data.get("interval", ""),
            cron=data.get("cron", ""),
            extra=_split_extra(data, _PERIODIC_KEYS),
        )
