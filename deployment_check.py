#!/usr/bin/env python3
"""
Smoke check for a deployed face authentication microservice.
"""

import asyncio
import sys
from typing import Any, Dict

import httpx

EMBEDDING_DIM = 128


async def check_endpoint(client: httpx.AsyncClient, url: str, method: str = "GET", data: Dict[Any, Any] = None) -> Dict[str, Any]:
    """Call a single endpoint and summarise the result."""
    try:
        if method == "GET":
            response = await client.get(url)
        elif method == "POST":
            response = await client.post(url, json=data)
        else:
            raise ValueError(f"Unsupported method: {method}")

        return {
            "url": url,
            "method": method,
            "status_code": response.status_code,
            "success": response.status_code < 400,
            "response": response.json() if response.headers.get("content-type", "").startswith("application/json") else response.text,
            "error": None
        }
    except Exception as e:
        return {
            "url": url,
            "method": method,
            "status_code": None,
            "success": False,
            "response": None,
            "error": str(e)
        }


async def check_deployment(base_url: str, embedding_dim: int = EMBEDDING_DIM) -> bool:
    """Run the smoke checks against a deployment."""
    print(f"Checking deployment at: {base_url}")
    print("=" * 60)

    async with httpx.AsyncClient(timeout=30.0) as client:
        checks = [
            {
                "name": "Health Check",
                "url": f"{base_url}/healthz",
                "method": "GET"
            },
            {
                "name": "Metrics",
                "url": f"{base_url}/metrics",
                "method": "GET"
            },
            {
                "name": "Identity Roster",
                "url": f"{base_url}/api/v1/identities",
                "method": "GET"
            },
            {
                # A zero probe never matches, so this is read-only
                "name": "Recognition Probe",
                "url": f"{base_url}/api/v1/recognize",
                "method": "POST",
                "data": {"embedding": [0.0] * embedding_dim}
            },
        ]

        results = []
        for check in checks:
            print(f"Checking: {check['name']}")
            result = await check_endpoint(client, check["url"], check["method"], check.get("data"))
            results.append({**check, **result})

            if result["success"]:
                print(f"  OK - Status: {result['status_code']}")
            else:
                print(f"  FAILED - Status: {result.get('status_code', 'N/A')}, Error: {result['error']}")

            print()

        print("=" * 60)
        passed = sum(1 for r in results if r["success"])
        print(f"Checks passed: {passed}/{len(results)}")

        if passed == len(results):
            return True

        for check in (r for r in results if not r["success"]):
            print(f"  - {check['name']}: {check['error'] or 'HTTP ' + str(check['status_code'])}")
        return False


async def main():
    if len(sys.argv) not in (2, 3):
        print("Usage: python deployment_check.py <base_url> [embedding_dim]")
        print("Example: python deployment_check.py https://face-auth-microservice.onrender.com 128")
        sys.exit(1)

    base_url = sys.argv[1].rstrip('/')
    embedding_dim = int(sys.argv[2]) if len(sys.argv) == 3 else EMBEDDING_DIM
    success = await check_deployment(base_url, embedding_dim)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    asyncio.run(main())
