"""Command-line client for the support server.

Starts a session, sends each message in order and prints the replies.
"""

from __future__ import annotations

import argparse
import json
import sys

import httpx


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with the support server")
    parser.add_argument("messages", nargs="+", help="Customer messages, sent in order")
    parser.add_argument("--email", default="customer@example.com", help="Customer email")
    parser.add_argument("--first-name", default="", help="Customer first name")
    parser.add_argument("--last-name", default="", help="Customer last name")
    parser.add_argument("--server-url", default="http://localhost:7002", help="Support server base URL")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout seconds")
    parser.add_argument("--trace", choices=("text", "json"), help="Print the session trace at the end")
    parser.add_argument("--verbose", action="store_true", help="Print routing details and escalation summary")
    return parser


def _fail(resp: httpx.Response) -> int:
    print(f"Request failed: {resp.status_code}", file=sys.stderr)
    print(resp.text, file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    base = args.server_url.rstrip("/")

    # Avoid inheriting system proxy settings that can break localhost calls.
    try:
        with httpx.Client(timeout=args.timeout, trust_env=False) as client:
            resp = client.post(
                f"{base}/session/start",
                json={
                    "customer_email": args.email,
                    "first_name": args.first_name,
                    "last_name": args.last_name,
                },
            )
            if resp.status_code >= 400:
                return _fail(resp)
            session_id = resp.json()["session_id"]
            print(f"session: {session_id}")

            for text in args.messages:
                print(f"\n> {text}")
                resp = client.post(f"{base}/session/{session_id}/message", json={"message": text})
                if resp.status_code >= 400:
                    return _fail(resp)
                data = resp.json()
                print(data.get("message", ""))
                if args.verbose:
                    print(f"  [agent={data.get('agent')} intent={data.get('intent')} escalated={data.get('escalated')}]")
                    if data.get("escalation_summary"):
                        print(json.dumps(data["escalation_summary"], ensure_ascii=False, indent=2))

            if args.trace:
                resp = client.get(f"{base}/session/{session_id}/trace", params={"format": args.trace})
                if resp.status_code >= 400:
                    return _fail(resp)
                print("\n--- trace ---")
                if args.trace == "json":
                    print(json.dumps(resp.json(), ensure_ascii=False, indent=2))
                else:
                    print(resp.text)
    except httpx.ReadTimeout:
        print("Request timed out. The server may still be processing the request.")
        print("Try again with a longer timeout, e.g. --timeout 120")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
