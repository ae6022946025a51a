from __future__ import annotations

import argparse
import json
import sys

import requests

from fro.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _emit(r: requests.Response) -> int:
    try:
        _print(r.json())
    except ValueError:
        print(r.text)
    return 0 if r.ok else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="FreshRSS Reconciler CLI")
    p.add_argument("--api", default=settings.api_url, help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_list = sub.add_parser("list", help="List FreshRSS resources")
    s_list.add_argument("--namespace", "-n", default=None)

    for cmd, help_text in (
        ("get", "Show a FreshRSS resource"),
        ("delete", "Delete a FreshRSS resource (managed objects are garbage collected)"),
        ("reconcile", "Trigger a reconciliation pass"),
    ):
        s = sub.add_parser(cmd, help=help_text)
        s.add_argument("name")
        s.add_argument("--namespace", "-n", default="default")

    s_create = sub.add_parser("create", help="Create a FreshRSS resource")
    s_create.add_argument("name")
    s_create.add_argument("--namespace", "-n", default="default")
    s_create.add_argument("--title", default="")
    s_create.add_argument("--default-user", required=True)

    s_update = sub.add_parser("update", help="Replace the spec of a FreshRSS resource")
    s_update.add_argument("name")
    s_update.add_argument("--namespace", "-n", default="default")
    s_update.add_argument("--title", default="")
    s_update.add_argument("--default-user", required=True)

    s_obj = sub.add_parser("object", help="Show a managed object")
    s_obj.add_argument("kind", choices=["Deployment", "Service", "Route"])
    s_obj.add_argument("name")
    s_obj.add_argument("--namespace", "-n", default="default")

    s_admit = sub.add_parser("admit", help="Record the hosts a router admitted a route under")
    s_admit.add_argument("name")
    s_admit.add_argument("--namespace", "-n", default="default")
    s_admit.add_argument("--host", action="append", default=[], help="Admitted host (repeatable)")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "list":
        params = {"namespace": args.namespace} if args.namespace else None
        return _emit(requests.get(f"{base}/freshrsses", params=params, timeout=10))

    if args.cmd == "get":
        return _emit(requests.get(f"{base}/freshrsses/{args.namespace}/{args.name}", timeout=10))

    if args.cmd == "delete":
        return _emit(requests.delete(f"{base}/freshrsses/{args.namespace}/{args.name}", timeout=10))

    if args.cmd == "reconcile":
        return _emit(requests.post(f"{base}/reconcile/{args.namespace}/{args.name}", timeout=30))

    if args.cmd == "create":
        payload = {
            "namespace": args.namespace,
            "name": args.name,
            "title": args.title,
            "defaultUser": args.default_user,
        }
        return _emit(requests.post(f"{base}/freshrsses", json=payload, timeout=10))

    if args.cmd == "update":
        payload = {"title": args.title, "defaultUser": args.default_user}
        return _emit(requests.put(f"{base}/freshrsses/{args.namespace}/{args.name}", json=payload, timeout=10))

    if args.cmd == "object":
        return _emit(requests.get(f"{base}/objects/{args.kind}/{args.namespace}/{args.name}", timeout=10))

    if args.cmd == "admit":
        payload = {"hosts": args.host}
        return _emit(requests.put(f"{base}/routes/{args.namespace}/{args.name}/status", json=payload, timeout=10))

    if args.cmd == "events":
        return _emit(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10))

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
