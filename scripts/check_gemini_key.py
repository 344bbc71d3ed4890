#!/usr/bin/env python3
"""
Check whether GEMINI_API_KEY is present in the environment and if it appears valid by listing
the models it can reach. Prints only non-sensitive status lines:
 - MISSING (no env var)
 - VALID (200 OK)
 - INVALID (<status code>)
 - ERROR (<message>)
"""
import os
import sys

import httpx
from dotenv import load_dotenv

load_dotenv()

KEY = os.getenv("GEMINI_API_KEY")
MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash-latest")
if not KEY:
    print("MISSING")
    sys.exit(0)

url = "https://generativelanguage.googleapis.com/v1beta/models"

try:
    with httpx.Client(timeout=10.0) as client:
        r = client.get(url, params={"key": KEY})
        if r.status_code == 200:
            names = [m.get("name", "") for m in r.json().get("models", [])]
            print("VALID")
            if not any(n.endswith(MODEL) for n in names):
                print(f"WARN: model {MODEL} not listed for this key")
            sys.exit(0)
        elif r.status_code in (400, 403):
            print(f"INVALID: {r.status_code}")
            sys.exit(1)
        else:
            print(f"INVALID: {r.status_code}")
            sys.exit(1)
except httpx.HTTPError as e:
    print("ERROR:", str(e))
    sys.exit(3)
