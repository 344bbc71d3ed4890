#!/usr/bin/env python3
"""
End-to-end check against a running server: create a profile and a conversation, send one message
and check that an assistant reply comes back and is stored. Prints PASS/FAIL and the reply.
"""
import os
import sys
import uuid

import httpx

API_BASE = os.getenv("SPILLMATE_API", "http://127.0.0.1:8000")

try:
    with httpx.Client(timeout=40.0) as c:
        uid = f"e2e-{uuid.uuid4().hex[:12]}"
        r = c.post(f"{API_BASE}/api/profile", json={"id": uid, "email": f"{uid}@example.com"})
        r.raise_for_status()
        r = c.post(f"{API_BASE}/api/conversations", json={"user_id": uid, "title": "E2E check"})
        r.raise_for_status()
        conv_id = r.json()["id"]

        payload = {"conversation_id": conv_id, "user_id": uid, "message": "I'm feeling a bit anxious today"}
        r2 = c.post(f"{API_BASE}/api/chat", json=payload)
        r2.raise_for_status()
        reply = r2.json()
        if reply.get("role") != "assistant" or not (reply.get("content") or "").strip():
            print("FAIL: unexpected reply ->", reply)
            sys.exit(1)

        stored = c.get(f"{API_BASE}/api/conversations", params={"user_id": uid}).json()[0]["messages"]
        if [m["role"] for m in stored] != ["user", "assistant"]:
            print("FAIL: conversation not stored as user/assistant ->", stored)
            sys.exit(1)
        print("PASS: ", reply["content"])
        sys.exit(0)
except httpx.HTTPError as e:
    print("ERROR:", e)
    sys.exit(3)
