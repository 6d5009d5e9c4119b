"""
Diagnostic to verify the Supabase project used by the simulator backend.

This script checks:
1. The project URL format and DNS resolution
2. The auth health endpoint over HTTPS
3. That every table the backend reads and writes answers a one-row select

Usage:
    python scripts/verify_supabase_setup.py
"""

import os
import re
import socket
import sys
from urllib.parse import urlparse

import requests
from dotenv import load_dotenv
from supabase import create_client

TABLES = [
    "profiles",
    "case_completions",
    "user_progress",
    "user_streaks",
    "leaderboard",
    "notifications",
]


def check_url_format(url: str) -> bool:
    """Check if URL has correct Supabase format."""
    if re.match(r"https://[a-z0-9]{20}\.supabase\.co/?$", url):
        print("✅ URL format is valid")
        return True
    print("❌ URL format is INVALID")
    print("   Expected format: https://xxxxxxxxxxxxxxxxxxxx.supabase.co")
    print(f"   Your URL: {url}")
    return False


def check_dns(hostname: str) -> bool:
    print(f"\n🔍 Checking DNS resolution for: {hostname}")
    try:
        info = socket.getaddrinfo(hostname, 443, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        print(f"❌ DNS resolution FAILED: {e}")
        return False
    print(f"✅ DNS resolves to: {', '.join({addr[4][0] for addr in info})}")
    return True


def check_auth_health(url: str, api_key: str) -> bool:
    print("\n🌐 Checking auth health endpoint...")
    try:
        response = requests.get(f"{url.rstrip('/')}/auth/v1/health", headers={"apikey": api_key}, timeout=10)
    except requests.exceptions.RequestException as e:
        print(f"❌ HTTP connection FAILED: {e}")
        return False

    if response.status_code == 200:
        print("✅ Auth service reachable")
        return True
    print(f"⚠️  Auth health returned status {response.status_code}: {response.text[:200]}")
    return False


def check_tables(url: str, api_key: str) -> dict:
    """One-row select per table. Returns table -> passed."""
    client = create_client(url, api_key)
    results = {}
    for table in TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
        except Exception as e:
            print(f"❌ {table}: {e}")
            results[table] = False
        else:
            print(f"✅ {table}")
            results[table] = True
    return results


def main() -> bool:
    print("=" * 70)
    print("🔍 SUPABASE SETUP DIAGNOSTICS")
    print("=" * 70)

    load_dotenv()
    load_dotenv("../.env")

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    print(f"\n📋 SUPABASE_URL: {url}")
    print(f"📋 SUPABASE_SERVICE_KEY: {key[:20]}... (truncated)" if key else "📋 SUPABASE_SERVICE_KEY: None")

    if not url or not key:
        print("\n❌ CRITICAL: Missing SUPABASE_URL or SUPABASE_SERVICE_KEY")
        return False

    url_valid = check_url_format(url)
    dns_valid = check_dns(urlparse(url).hostname)
    if not dns_valid:
        print("\n❌ Cannot proceed - DNS resolution failed. Copy the Project URL from Settings > API.")
        return False

    http_valid = check_auth_health(url, key)

    print("\n" + "=" * 70)
    print("📦 TABLE CHECKS")
    print("=" * 70)
    tables = check_tables(url, key)

    print("\n" + "=" * 70)
    print("📊 DIAGNOSTIC SUMMARY")
    print("=" * 70)
    print(f"URL Format:        {'✅ PASS' if url_valid else '❌ FAIL'}")
    print(f"DNS Resolution:    {'✅ PASS' if dns_valid else '❌ FAIL'}")
    print(f"Auth Health:       {'✅ PASS' if http_valid else '❌ FAIL'}")
    print(f"Tables:            {sum(tables.values())}/{len(tables)} reachable")

    return url_valid and dns_valid and http_valid and all(tables.values())


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
