#!/usr/bin/env python3
"""Smoke script for the prebooking API endpoints against a running server."""

import sys

import httpx


BASE_URL = "http://127.0.0.1:8000"
USER_REF = "smoke_user@example.com"


def create_prebooking() -> str | None:
    print("=" * 60)
    print("Testing POST /api/v1/prebookings")
    print("=" * 60)

    payload = {
        "venueRef": "crossfitcerdanyola300",
        "booking": {"day": "20300214", "id": "12345", "familyId": "", "insist": False},
        "classLocalTime": "21:30",
        "rejectionMessage": "No puedes reservar clases con más de 4 días de antelación",
    }

    try:
        response = httpx.post(
            f"{BASE_URL}/api/v1/prebookings",
            json=payload,
            headers={"X-User-Ref": USER_REF},
            timeout=30.0,
        )
        response.raise_for_status()

        data = response.json()
        print(f"✅ Created {data['id']} available at {data['availableAt']} ({data['status']})")
        return data["id"]
    except httpx.HTTPStatusError as e:
        print(f"❌ HTTP Error: {e.response.status_code}")
        print(f"Response: {e.response.text}")
        return None
    except Exception as e:
        print(f"❌ Error: {e}")
        return None


def list_prebookings() -> None:
    print("\n" + "=" * 60)
    print("Testing GET /api/v1/prebookings")
    print("=" * 60)

    response = httpx.get(f"{BASE_URL}/api/v1/prebookings", headers={"X-User-Ref": USER_REF}, timeout=30.0)
    if response.status_code != 200:
        print(f"❌ HTTP Error: {response.status_code} {response.text}")
        return
    for p in response.json()["prebookings"]:
        print(f"  {p['id']} {p['status']} {p['availableAt']}")


def cancel_prebooking(prebooking_id: str | None) -> None:
    print("\n" + "=" * 60)
    print("Testing DELETE /api/v1/prebookings/{id}")
    print("=" * 60)

    if not prebooking_id:
        print("⚠️  Nothing to cancel")
        return

    response = httpx.delete(
        f"{BASE_URL}/api/v1/prebookings/{prebooking_id}",
        headers={"X-User-Ref": USER_REF},
        timeout=30.0,
    )
    print(f"{'✅' if response.status_code == 200 else '❌'} {response.status_code} {response.text}")


def main():
    print("\n🚀 Testing Prebooking API\n")

    try:
        httpx.get(f"{BASE_URL}/health", timeout=5.0)
        print("✅ Server is running\n")
    except Exception:
        print("❌ Server is not running!")
        print("   Please start it with: uvicorn prebooker.main:app --reload --port 8000")
        sys.exit(1)

    prebooking_id = create_prebooking()
    list_prebookings()
    cancel_prebooking(prebooking_id)

    print("\n" + "=" * 60)
    print("✅ Smoke run complete!")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    main()
