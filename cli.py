from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _read(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as f:
        return f.read()


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Declarative Network Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_show = sub.add_parser("show", help="Show a network's observed state")
    s_show.add_argument("network")

    s_rec = sub.add_parser("reconstruct", help="Print the declarative document for a network")
    s_rec.add_argument("network")
    s_rec.add_argument("--out", help="Write the document to a file instead of stdout")

    s_plan = sub.add_parser("plan", help="Show the operations a document would run (dry run)")
    s_plan.add_argument("network")
    s_plan.add_argument("--file", "-f", required=True, help="Document path, or - for stdin")

    s_apply = sub.add_parser("apply", help="Converge a network toward a document")
    s_apply.add_argument("network")
    s_apply.add_argument("--file", "-f", required=True, help="Document path, or - for stdin")

    s_ev = sub.add_parser("events", help="Show audit events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--network")

    args = p.parse_args(argv)

    base = args.api.rstrip("/") + "/api"

    if args.cmd == "show":
        r = requests.get(f"{base}/networks/{args.network}/", timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconstruct":
        r = requests.get(f"{base}/networks/{args.network}/reconstruct/", timeout=30)
        if not r.ok:
            _print(r.json())
            return 1
        doc = r.json()["yaml"]
        if args.out:
            with open(args.out, "w", encoding="utf-8") as f:
                f.write(doc)
        else:
            print(doc, end="")
        return 0

    if args.cmd in {"plan", "apply"}:
        payload = {"yaml": _read(args.file)}
        r = requests.post(f"{base}/networks/{args.network}/{args.cmd}/", json=payload, timeout=120)
        _print(r.json())
        if not r.ok:
            return 1
        if args.cmd == "apply":
            return 0 if r.json().get("success") else 2
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.network:
            params["network"] = args.network
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
