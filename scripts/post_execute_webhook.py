#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import time
from typing import Any

import httpx
from httpx import ConnectError

from prebooker.infrastructure.security.token_codec import SecurityTokenCodec


def build_payload(codec: SecurityTokenCodec, prebooking_id: str, execute_at_ms: int, user_ref: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prebookingId": prebooking_id,
        "executeAt": execute_at_ms,
        "securityToken": codec.issue(prebooking_id, execute_at_ms),
    }
    if user_ref:
        payload["userRef"] = user_ref
    return payload


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a signed execute-prebooking webhook POST")
    parser.add_argument("--url", default="http://127.0.0.1:8000/api/execute-prebooking")
    parser.add_argument("--id", required=True, help="Prebooking id")
    parser.add_argument("--execute-at", type=int, default=None, help="Epoch ms; defaults to now + 5s")
    parser.add_argument("--user", default=None, help="User ref to fetch the session concurrently")
    parser.add_argument("--secret", required=True, help="PREBOOKING_SECRET used by the server")
    args = parser.parse_args()

    execute_at_ms = args.execute_at or int((time.time() + 5) * 1000)
    payload = build_payload(SecurityTokenCodec(args.secret), args.id, execute_at_ms, args.user)
    body = json.dumps(payload).encode("utf-8")

    try:
        resp = httpx.post(args.url, content=body, headers={"Content-Type": "application/json"}, timeout=30.0)
    except ConnectError:
        print("Connection refused. Is the FastAPI server running?")
        print("Try: uvicorn prebooker.main:app --reload --port 8000")
        return

    print(resp.status_code)
    if resp.text:
        print(resp.text)


if __name__ == "__main__":
    main()
