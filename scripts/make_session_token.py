#!/usr/bin/env python3
"""
Mint a session token signed with AUTH_JWT_SECRET, for calling /api/session and the admin
routes against a local server. Prints the token only.

  python scripts/make_session_token.py <user_id> <email> [--minutes 60]
"""
import argparse

from spillmate.auth import create_session_token

parser = argparse.ArgumentParser()
parser.add_argument("user_id")
parser.add_argument("email")
parser.add_argument("--minutes", type=int, default=60)
args = parser.parse_args()

print(create_session_token(args.user_id, args.email, minutes=args.minutes))
