import json
import os

import httpx

EXPECTED_ROUTES = {
    ("/files", "post"),
    ("/files", "delete"),
    ("/files/upload-chunk", "post"),
    ("/files/complete-upload", "post"),
    ("/files/{upload_id}/cancel-upload", "delete"),
}


def main() -> int:
    base_url = os.getenv("VERIFY_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
    print(f"Checking runtime at {base_url}")
    with httpx.Client(base_url=base_url, timeout=10.0) as client:
        try:
            health = client.get("/health")
        except httpx.HTTPError as exc:
            print(f"[FAIL] Could not connect to service: {exc}")
            return 1

        print(f"[INFO] /health status={health.status_code}")
        if health.status_code != 200:
            print("[FAIL] /health is not healthy.")
            return 1

        version = client.get("/version")
        app_version_header = version.headers.get("X-Upload-Service-Version")
        print(f"[INFO] /version status={version.status_code} X-Upload-Service-Version={app_version_header}")
        if version.status_code == 200:
            print(f"[OK] version payload: {json.dumps(version.json(), sort_keys=True)}")
        else:
            print("[WARN] /version missing. You may be running an older server process.")

        schema = client.get("/openapi.json")
        if schema.status_code != 200:
            print(f"[FAIL] /openapi.json unexpected status: {schema.status_code}")
            return 3

        paths = schema.json().get("paths", {})
        served = {(path, method) for path, ops in paths.items() for method in ops}
        missing = sorted(EXPECTED_ROUTES - served)
        if missing:
            for path, method in missing:
                print(f"[FAIL] {method.upper()} {path} is not served.")
            print("[HINT] Stop running servers, pull the latest code, then restart uvicorn from repo root.")
            return 2

        print("[OK] all upload routes are available.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
