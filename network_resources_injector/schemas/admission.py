from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class K8sModel(BaseModel):
    """camelCase on the wire, snake_case in Python, unknown fields ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ========== Pod ==========

class OwnerReference(K8sModel):
    api_version: str = ""
    kind: str = ""
    name: str = ""
    uid: str = ""
    controller: Optional[bool] = None


class ObjectMeta(K8sModel):
    name: str = ""
    generate_name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list)

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _null_map(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("owner_references", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class EnvVar(K8sModel):
    name: str
    value: Optional[str] = None


class ResourceRequirements(K8sModel):
    requests: Optional[Dict[str, str]] = None
    limits: Optional[Dict[str, str]] = None

    @field_validator("requests", "limits", mode="before")
    @classmethod
    def _quantities_as_strings(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: str(v) for k, v in value.items()}
        return value


class Container(K8sModel):
    name: str = ""
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    env: Optional[List[EnvVar]] = None

    @field_validator("resources", mode="before")
    @classmethod
    def _null_resources(cls, value: Any) -> Any:
        return value if value is not None else {}


class PodSpec(K8sModel):
    containers: List[Container] = Field(default_factory=list)
    node_selector: Optional[Dict[str, str]] = None


class Pod(K8sModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)

    @property
    def display_name(self) -> str:
        name = self.metadata.name or self.metadata.generate_name
        return f"{self.metadata.namespace}/{name}"


# ========== AdmissionReview ==========

class AdmissionRequest(K8sModel):
    uid: str
    kind: Optional[Dict[str, str]] = None
    namespace: str = ""
    name: str = ""
    operation: str = ""
    object: Optional[Dict[str, Any]] = None


class AdmissionStatus(K8sModel):
    message: str = ""


class AdmissionResponse(K8sModel):
    uid: str
    allowed: bool
    status: Optional[AdmissionStatus] = None
    patch: Optional[str] = None
    patch_type: Optional[str] = None


class AdmissionReview(K8sModel):
    api_version: str = "admission.k8s.io/v1"
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None
