import os
import subprocess
import sys
import time
import uuid

import httpx


def run_verification():
    print("Starting Outcome Memory HTTP Server...")
    env = dict(os.environ)
    env.setdefault("OUTCOME_MEMORY_DB_URL", "sqlite:///outcome_memory_verification.db")
    server_process = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "api.http_server:app", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )

    # Wait for server to start
    time.sleep(3)

    try:
        client = httpx.Client(base_url="http://127.0.0.1:8000")
        caller = "verification-script"
        run_id = uuid.uuid4().hex[:8]

        print("Checking server health...")
        print(f"Health Status: {client.get('/health').json()}")

        print("\nRegistering actions and recording lifecycle events...")
        action_ids = [f"verify_{run_id}_{i}" for i in range(4)]
        for action_id in action_ids:
            client.post(
                "/v1/actions",
                json={"action_id": action_id, "action_type": "verification", "caller_identity": caller},
            )
            client.post(f"/v1/actions/{action_id}/start", json={"action_id": action_id, "caller_identity": caller})
        for action_id in action_ids[:3]:
            resp = client.post(
                f"/v1/actions/{action_id}/complete",
                json={
                    "action_id": action_id,
                    "completed_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                    "caller_identity": caller,
                },
            )
            print(f"Completed {action_id}: {resp.json()['status']}")

        print("\nRetrieving execution probabilities...")
        batch = client.post(
            "/v1/execution-probabilities",
            json={"action_ids": action_ids, "caller_identity": caller},
        ).json()
        print(f"Batch Status: {batch['status']}")
        for action_id, prob in batch["data"]["probabilities"].items():
            print(f"  {action_id}: {prob:.4f}")
        print(f"Explanation: {batch['explanation']}")

        print("\nQuerying Audit Log for verification...")
        audit_resp = client.post(
            "/v1/audit-log",
            json={"operation": "execution_probabilities", "limit": 5, "caller_identity": caller},
        )
        records = audit_resp.json()["records"]
        print(f"Found {len(records)} audit records for 'execution_probabilities'.")
        for record in records:
            print(
                f" - [{record['timestamp']}] {record['operation']} "
                f"v{record['algorithm_version']} ({record['duration_ms']:.2f}ms)"
            )

        found = any(r["caller_identity"] == caller for r in records)
        if found:
            print("\nVerification SUCCESS: audited batch estimate found.")
        else:
            print("\nVerification FAILURE: required audit record not found.")

    finally:
        print("\nShutting down server...")
        server_process.terminate()
        try:
            server_process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            server_process.kill()


if __name__ == "__main__":
    run_verification()
