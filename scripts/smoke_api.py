#!/usr/bin/env python3
"""Smoke test for the service desk endpoints against a running server."""

import sys
import uuid

import httpx


BASE_URL = "http://127.0.0.1:8000"


def _email(label: str) -> str:
    return f"{label}-{uuid.uuid4().hex[:8]}@example.com"


def test_create(email: str, service_type: str = "LOANS") -> bool:
    """Enqueue a customer and follow nothing; only the redirect is checked."""
    print("=" * 60)
    print(f"Testing POST /api/customer ({email}, {service_type})")
    print("=" * 60)

    try:
        response = httpx.post(
            f"{BASE_URL}/api/customer",
            json={"email": email, "name": email.split("@")[0], "service_type": service_type},
            timeout=10.0,
        )
        if response.status_code != 303:
            print(f"❌ Expected 303, got {response.status_code}: {response.text}")
            return False
        print(f"✅ Redirected to {response.headers['location']}")
        return True
    except Exception as e:
        print(f"❌ Error: {e}")
        return False


def test_position(email: str) -> dict | None:
    print("\n" + "=" * 60)
    print(f"Testing GET /api/customer/{email}/position")
    print("=" * 60)

    try:
        response = httpx.get(f"{BASE_URL}/api/customer/{email}/position", timeout=10.0)
        response.raise_for_status()
        data = response.json()
        print(f"✅ Position {data['position']} ({data['status']}, {data['service_type']})")

        slots = httpx.get(f"{BASE_URL}/api/customer/{email}/slots-available", timeout=10.0)
        slots.raise_for_status()
        print(f"   Free slots for {data['service_type']}: {slots.json()}")
        return data
    except httpx.HTTPStatusError as e:
        print(f"❌ HTTP Error: {e.response.status_code}")
        print(f"Response: {e.response.text}")
        return None
    except Exception as e:
        print(f"❌ Error: {e}")
        return None


def test_queue_stream(email: str) -> bool:
    """Read the first queue-update event, then disconnect."""
    print("\n" + "=" * 60)
    print(f"Testing SSE /api/customer/{email}/queue")
    print("=" * 60)

    try:
        with httpx.stream("GET", f"{BASE_URL}/api/customer/{email}/queue", timeout=10.0) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                if line.startswith("data: "):
                    print(f"✅ First update: {line.removeprefix('data: ')}")
                    return True
        print("❌ Stream ended without an update")
        return False
    except Exception as e:
        print(f"❌ Error: {e}")
        return False


def test_finish(email: str) -> bool:
    print("\n" + "=" * 60)
    print(f"Testing PUT /api/customer/{email}")
    print("=" * 60)

    try:
        response = httpx.put(f"{BASE_URL}/api/customer/{email}", timeout=10.0)
        response.raise_for_status()
        data = response.json()
        print(f"✅ Session {data['id']} finished as {data['status']}")
        return True
    except httpx.HTTPStatusError as e:
        print(f"❌ HTTP Error: {e.response.status_code}")
        print(f"Response: {e.response.text}")
        return False
    except Exception as e:
        print(f"❌ Error: {e}")
        return False


def main():
    """Run all checks."""
    print("\n🚀 Testing Service Desk API\n")

    try:
        httpx.get(f"{BASE_URL}/health", timeout=5.0).raise_for_status()
        print("✅ Server is running\n")
    except Exception:
        print("❌ Server is not running!")
        print("   Please start it with: uvicorn servicedesk.main:app --reload")
        sys.exit(1)

    serving = _email("serving")
    waiting = _email("waiting")

    ok = test_create(serving, "OTHER") and test_create(waiting, "OTHER")
    ok = ok and test_position(serving) is not None
    ok = ok and test_queue_stream(serving)
    ok = ok and test_finish(serving)
    # the waiting customer may have been promoted meanwhile; either way this ends their session
    ok = ok and test_finish(waiting)

    print("\n" + "=" * 60)
    print("✅ Checks complete!" if ok else "❌ Some checks failed")
    print("=" * 60 + "\n")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
