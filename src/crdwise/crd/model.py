"""
In-memory model of a CustomResourceDefinition.

The model keeps exactly what the change analyzer compares: identity and
names, scope, the ordered version list, each version's validation tree,
printer columns and subresources. Equality is structural, so two CRDs that
differ only in key order or YAML formatting compare equal.
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CrdScope(str, Enum):
    """Whether instances of a CRD live in a namespace or at cluster level."""

    NAMESPACED = "Namespaced"
    CLUSTER = "Cluster"


class SchemaProperty(BaseModel):
    """
    One node of an OpenAPI v3 validation tree (the subset CRDs use).

    Attributes:
        type: Declared type (object, array, string, integer, number, boolean)
        properties: Child fields by name (order-independent)
        required: Names of required child fields
        items: Element schema for arrays
        additional_properties: Map value schema, or a bool allowing/denying extras
        preserve_unknown_fields: x-kubernetes-preserve-unknown-fields
        int_or_string: x-kubernetes-int-or-string
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str | None = None
    description: str | None = None
    default: Any = None
    format: str | None = None
    pattern: str | None = None
    enum: list[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    min_length: int | None = None
    max_length: int | None = None
    min_items: int | None = None
    max_items: int | None = None
    min_properties: int | None = None
    max_properties: int | None = None
    nullable: bool = False
    properties: dict[str, "SchemaProperty"] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    items: Optional["SchemaProperty"] = None
    additional_properties: Union[bool, "SchemaProperty", None] = None
    preserve_unknown_fields: bool = False
    int_or_string: bool = False


class PrinterColumn(BaseModel):
    """An additionalPrinterColumns entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: str = "string"
    json_path: str = ""
    description: str | None = None
    format: str | None = None
    priority: int = 0


class CrdNames(BaseModel):
    """The spec.names block."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    plural: str
    singular: str | None = None
    list_kind: str | None = None
    short_names: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)


class CrdVersionSchema(BaseModel):
    """
    One entry of spec.versions.

    Attributes:
        name: Version name (e.g., "v1alpha1")
        served: Whether the API server serves this version
        storage: Whether this is the storage version
        deprecated: Whether the version is marked deprecated
        deprecation_warning: Custom deprecation warning text
        validation: Root of the openAPIV3Schema tree (None if absent)
        printer_columns: Printer columns in declared order
        subresources: Enabled subresources, sorted (e.g., ["scale", "status"])
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    served: bool = True
    storage: bool = False
    deprecated: bool = False
    deprecation_warning: str | None = None
    validation: SchemaProperty | None = None
    printer_columns: list[PrinterColumn] = Field(default_factory=list)
    subresources: list[str] = Field(default_factory=list)


class CrdSchema(BaseModel):
    """
    A parsed CRD.

    Version names are unique; the parser enforces this.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    group: str
    scope: CrdScope = CrdScope.NAMESPACED
    names: CrdNames
    versions: list[CrdVersionSchema]
    stored_versions: list[str] = Field(default_factory=list)

    @property
    def kind(self) -> str:
        return self.names.kind

    @property
    def plural(self) -> str:
        return self.names.plural

    @property
    def version_names(self) -> list[str]:
        return [v.name for v in self.versions]

    @property
    def storage_version(self) -> str | None:
        for version in self.versions:
            if version.storage:
                return version.name
        return None

    def version(self, name: str) -> CrdVersionSchema | None:
        for version in self.versions:
            if version.name == name:
                return version
        return None
