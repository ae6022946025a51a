from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

API_VERSION = "freshrss.demo.openshift.com/v1alpha1"
KIND = "FreshRSS"

# RFC 1123 label, as used for object names and namespaces.
NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class FreshRSSSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field("", description="Title for the site")
    default_user: str = Field(..., alias="defaultUser", min_length=1, description="Default FreshRSS user")


class FreshRSSStatus(BaseModel):
    url: str = ""


class ObjectMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    namespace: str
    name: str
    uid: str = ""
    resource_version: str = Field("", alias="resourceVersion")


class FreshRSS(BaseModel):
    """The desired-state resource."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(API_VERSION, alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: FreshRSSSpec
    status: FreshRSSStatus = Field(default_factory=FreshRSSStatus)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    def manifest(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CreateFreshRSSRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    namespace: str = Field("default", max_length=63, pattern=NAME_PATTERN)
    name: str = Field(..., max_length=63, pattern=NAME_PATTERN)
    title: str = ""
    default_user: str = Field(..., alias="defaultUser", min_length=1)

    def to_resource(self) -> FreshRSS:
        return FreshRSS(
            metadata=ObjectMeta(namespace=self.namespace, name=self.name),
            spec=FreshRSSSpec(title=self.title, default_user=self.default_user),
        )


class UpdateFreshRSSRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    default_user: str = Field(..., alias="defaultUser", min_length=1)


class AdmitRouteRequest(BaseModel):
    hosts: list[str] = Field(default_factory=list, description="Hosts the router admitted the route under")
