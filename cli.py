from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Predictable IP allocator CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_pool = sub.add_parser("pools", help="Show the allocations of a pool")
    s_pool.add_argument("name")

    s_rec = sub.add_parser("reconcile", help="Reconcile one fleet member now")
    s_rec.add_argument("--namespace", required=True)
    s_rec.add_argument("--name", required=True)

    s_rel = sub.add_parser("release", help="Release an address from a pool")
    s_rel.add_argument("pool")
    s_rel.add_argument("address")

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--member", default=None)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "pools":
        r = requests.get(f"{base}/pools/{args.name}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        payload = {"namespace": args.namespace, "name": args.name}
        r = requests.post(f"{base}/members/events", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "release":
        r = requests.delete(f"{base}/pools/{args.pool}/addresses/{args.address}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.member:
            params["member"] = args.member
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
