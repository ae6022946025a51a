"""Per-kind synthesis of the objects a FreshRSS resource owns.

Each synthesizer maps a FreshRSS to the identity, the empty skeleton, the
desired owned fields, and a pure merge policy ``merge(desired, live)`` that
returns a new object. Merges never touch fields outside their owned subset.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable

from .api_models import FreshRSS
from .ownership import owner_reference, set_controller_reference
from .settings import settings


DEPLOYMENT = "Deployment"
SERVICE = "Service"
ROUTE = "Route"

CONTAINER_NAME = "freshrss"
CONTAINER_PORT = 8080
SERVICE_PORT = 80
ROUTE_WEIGHT = 100

# Container keys the Deployment merge owns when a single container already exists.
OWNED_CONTAINER_FIELDS = ("name", "image", "ports", "imagePullPolicy", "env")

Obj = dict[str, Any]
MergeFn = Callable[[Obj, Obj], Obj]


@dataclass(frozen=True)
class Synthesis:
    kind: str
    namespace: str
    name: str
    skeleton: Obj
    desired: Obj
    merge: MergeFn

    @property
    def identity(self) -> tuple[str, str]:
        return self.namespace, self.name


def _labels(name: str) -> dict[str, str]:
    return {"app": name}


def merge_deployment(desired: Obj, live: Obj) -> Obj:
    obj = copy.deepcopy(live)
    set_controller_reference(obj, desired["owner"])

    spec = obj.setdefault("spec", {})
    spec["replicas"] = desired["replicas"]
    spec.setdefault("selector", {})["matchLabels"] = dict(desired["labels"])

    template = spec.setdefault("template", {})
    template_meta = template.setdefault("metadata", {})
    template_meta["name"] = desired["templateName"]
    template_meta["labels"] = dict(desired["labels"])

    pod_spec = template.setdefault("spec", {})
    containers = pod_spec.get("containers") or []
    container = desired["container"]
    if len(containers) != 1:
        pod_spec["containers"] = [copy.deepcopy(container)]
    else:
        for key in OWNED_CONTAINER_FIELDS:
            containers[0][key] = copy.deepcopy(container[key])
    return obj


def merge_service(desired: Obj, live: Obj) -> Obj:
    obj = copy.deepcopy(live)
    set_controller_reference(obj, desired["owner"])

    spec = obj.setdefault("spec", {})
    spec["ports"] = copy.deepcopy(desired["ports"])
    spec["selector"] = dict(desired["selector"])
    return obj


def merge_route(desired: Obj, live: Obj) -> Obj:
    obj = copy.deepcopy(live)
    set_controller_reference(obj, desired["owner"])

    # other route settings (tls, host, ...) belong to whoever set them
    spec = obj.setdefault("spec", {})
    spec["to"] = dict(desired["to"])
    spec["port"] = dict(desired["port"])
    spec["wildcardPolicy"] = desired["wildcardPolicy"]
    return obj


class Synthesizer:
    kind = ""
    api_version = ""
    merge: MergeFn

    def synthesize(self, instance: FreshRSS) -> Synthesis:
        desired = self.desired(instance)
        desired["owner"] = owner_reference(instance.manifest())
        return Synthesis(
            kind=self.kind,
            namespace=instance.namespace,
            name=instance.name,
            skeleton=self.skeleton(instance),
            desired=desired,
            merge=type(self).merge,
        )

    def skeleton(self, instance: FreshRSS) -> Obj:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"name": instance.name, "namespace": instance.namespace},
        }

    def desired(self, instance: FreshRSS) -> Obj:
        raise NotImplementedError


class DeploymentSynthesizer(Synthesizer):
    kind = DEPLOYMENT
    api_version = "apps/v1"
    merge = staticmethod(merge_deployment)

    def desired(self, instance: FreshRSS) -> Obj:
        return {
            "replicas": 1,
            "labels": _labels(instance.name),
            "templateName": instance.name,
            "container": {
                "name": CONTAINER_NAME,
                "image": settings.image,
                "ports": [{"containerPort": CONTAINER_PORT, "protocol": "TCP"}],
                "imagePullPolicy": "Always",
                "env": [
                    {"name": "TITLE", "value": instance.spec.title},
                    {"name": "DEFAULTUSER", "value": instance.spec.default_user},
                ],
            },
        }


class ServiceSynthesizer(Synthesizer):
    kind = SERVICE
    api_version = "v1"
    merge = staticmethod(merge_service)

    def desired(self, instance: FreshRSS) -> Obj:
        return {
            "ports": [{"port": SERVICE_PORT, "targetPort": CONTAINER_PORT, "protocol": "TCP"}],
            "selector": _labels(instance.name),
        }


class RouteSynthesizer(Synthesizer):
    kind = ROUTE
    api_version = "route.openshift.io/v1"
    merge = staticmethod(merge_route)

    def desired(self, instance: FreshRSS) -> Obj:
        return {
            "to": {"kind": SERVICE, "name": instance.name, "weight": ROUTE_WEIGHT},
            "port": {"targetPort": CONTAINER_PORT},
            "wildcardPolicy": "None",
        }


# Applied in this order; the Route is last because status is read from it.
SYNTHESIZERS: tuple[Synthesizer, ...] = (
    DeploymentSynthesizer(),
    ServiceSynthesizer(),
    RouteSynthesizer(),
)
MANAGED_KINDS = tuple(s.kind for s in SYNTHESIZERS)
