#!/usr/bin/env python
"""Smoke script: resolve a plan through a running server and optionally deploy it"""
import requests
import json
import sys

BASE_URL = "http://localhost:8000"

# Existing platform, new logging
payload = {
    "inputs": {
        "applicationName": "aibox",
        "environmentName": "dev",
        "region": "eastus2",
        "createPlatformGroup": False,
        "existingPlatformResourceGroup": "rg-shared-ai",
        "existingPlatformName": "aif-shared",
        "createLoggingGroup": True,
    }
}
args = [a for a in sys.argv[1:] if not a.startswith("--")]
if args:
    with open(args[0], "r") as f:
        payload = json.load(f)

deploy = "--up" in sys.argv

print("=" * 60)
print("Resolving deployment plan")
print("=" * 60)

try:
    response = requests.post(f"{BASE_URL}/resolve", json=payload, timeout=30)
    print(f"\nStatus Code: {response.status_code}")

    if response.status_code != 200:
        print("\n[ERROR] Plan resolution failed!")
        for error in response.json().get("detail", {}).get("errors", []):
            print(f"  [{error['code']}] {error['message']}")
        sys.exit(1)

    plan = response.json()
    print(f"\nTopology: platform={plan['topology']['platform']['variant']}, "
          f"logging={plan['topology']['logging']['variant']}")

    print("\nStages:")
    for stage in plan["stages"]:
        deps = ", ".join(stage["depends_on"]) or "-"
        print(f"  {stage['id']:<14} -> {stage['resource_group_target']}  (after: {deps})")

    print("\nParallel batches:")
    for i, batch in enumerate(plan["batches"], 1):
        print(f"  {i}. {', '.join(batch)}")

    print("\nRole assignments:")
    for ra in plan["role_assignments"]:
        print(f"  [OK] {ra['role_name']} @ {ra['scope']} ({ra['assignment_id']})")

    if plan["warnings"]:
        print("\nWarnings:")
        for w in plan["warnings"]:
            print(f"  [WARNING] {w['message']}")

    if not deploy:
        sys.exit(0)

    print("\n" + "=" * 60)
    print("Calling /up API...")
    print("=" * 60)
    response = requests.post(f"{BASE_URL}/up", json=payload, timeout=1800)
    print(f"\nStatus Code: {response.status_code}")
    if response.status_code == 200:
        outputs = response.json().get("outputs", {})
        print("\n[SUCCESS] Deployment completed!")
        for key, value in outputs.items():
            print(f"  {key}: {str(value)[:80]}")
    else:
        print("\n[ERROR] Deployment failed!")
        print(f"\nResponse: {response.text[:2000]}")
        sys.exit(1)

except requests.exceptions.ConnectionError:
    print(f"\n[ERROR] Could not connect to server at {BASE_URL}")
    print("Make sure the server is running!")
    sys.exit(1)
