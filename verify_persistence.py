import time
import subprocess
import httpx
import sys
import os
import signal

from ledger_backend.app.core.jwt import create_access_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"

# Rows created by ledger_backend/seed_employees.py
FINANCE_EMAIL = "finance@ledger.local"
EMPLOYEE_EMAIL = "employee@ledger.local"


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def start_server(env=None):
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "ledger_backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def bearer(email, user_id, role):
    token = create_access_token(data={"sub": email, "user_id": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def run_verification(finance_id: int, employee_id: int):
    finance = bearer(FINANCE_EMAIL, finance_id, "FINANCE")

    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server({**os.environ, "DB_ECHO": "True"})

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise RuntimeError("Server start failed")

        # 2. Post a reimbursement
        print("\n--- [Step 2] Posting Reimbursement (Persistence Test) ---")
        balance_url = f"{BASE_URL}{API_PREFIX}/ledger/balance/{employee_id}"
        before = httpx.get(balance_url, headers=finance).json()["current_balance"]

        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/ledger/reimbursement",
            json={"employee_id": employee_id, "amount": "12.34", "description": "Persistence check"},
            headers=finance
        )
        if resp.status_code != 201:
            print(f"❌ Posting Failed: {resp.status_code} {resp.text}")
            raise RuntimeError("Posting failed")
        entry = resp.json()
        print(f"✅ Entry {entry['id']} posted, running balance {entry['running_balance']} (was {before})")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        # 4. Read back
        print("\n--- [Step 5] Reading Entry and Balance (Post-Restart) ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/ledger/entries/{entry['id']}", headers=finance)
        if resp.status_code != 200:
            print(f"❌ Entry Lookup Failed (Persistence Issue?): {resp.status_code} {resp.text}")
            raise RuntimeError("Entry missing after restart")

        balance = httpx.get(balance_url, headers=finance).json()["current_balance"]
        if balance != entry["running_balance"]:
            print(f"❌ Balance {balance} does not match posted running balance {entry['running_balance']}")
            raise RuntimeError("Balance drifted after restart")
        print(f"✅ Entry and balance {balance} persisted")

        # 5. Reconcile
        print("\n--- [Step 6] Reconciling ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/ledger/reconciliation/{employee_id}", headers=finance)
        report = resp.json()
        if report["is_balanced"] and not report["findings"]:
            print("✅ Ledger reconciles")
        else:
            print(f"❌ Reconciliation findings: {report['findings']}")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: python verify_persistence.py <finance_employee_id> <employee_id>")
        sys.exit(2)
    run_verification(int(sys.argv[1]), int(sys.argv[2]))
