#!/usr/bin/env python3
import os
import sys
import subprocess
import time
import platform
import argparse
import socket

# --- Configuration ---
SERVICES = {
    "products": 8002,
    "orders": 8003,
    "payments": 8004,
}

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')  # Enable ANSI colors in Windows terminal

def log(msg, color=Colors.ENDC, bold=False):
    prefix = Colors.BOLD if bold else ""
    print(f"{prefix}{color}{msg}{Colors.ENDC}", flush=True)

# --- Port Management ---

def get_process_on_port(port):
    """Finds the PID of the process listening on the given port."""
    try:
        if platform.system() == "Windows":
            result = subprocess.run(
                f'netstat -ano | findstr :{port}', shell=True,
                stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
            )
            for line in result.stdout.strip().splitlines():
                if f":{port}" in line and "LISTENING" in line:
                    return line.split()[-1]
        else:
            result = subprocess.run(
                ['lsof', '-t', f'-i:{port}'], stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
            )
            if result.returncode == 0 and result.stdout:
                return result.stdout.strip().splitlines()[0]
    except OSError as e:
        log(f"Error checking port {port}: {e}", Colors.WARNING)
    return None

def kill_process(pid):
    try:
        if platform.system() == "Windows":
            subprocess.run(f"taskkill /F /PID {pid}", shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            subprocess.run(['kill', '-9', str(pid)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return True
    except OSError as e:
        log(f"  └─ Failed to kill PID {pid}: {e}", Colors.FAIL)
        return False

def clean_ports(services):
    log("[1/3] Checking ports...", Colors.BLUE, bold=True)
    for name in services:
        port = SERVICES[name]
        pid = get_process_on_port(port)
        if not pid:
            log(f"✓ Port {port}: AVAILABLE", Colors.GREEN)
            continue
        log(f"✓ Port {port}: IN USE (PID: {pid}), killing", Colors.WARNING)
        if not kill_process(pid):
            log("     Try running as Administrator/sudo", Colors.FAIL)

# --- Service Management ---

def start_services(services, env, reload=False):
    log("\n[2/3] Starting services...", Colors.BLUE, bold=True)
    processes = []
    for name in services:
        cmd = [
            sys.executable, "-m", "uvicorn", f"streetserve.{name}.main:app",
            "--host", "0.0.0.0", "--port", str(SERVICES[name]),
        ]
        if reload:
            cmd.append("--reload")
        processes.append(subprocess.Popen(cmd, env=env))
        log(f"✓ {name} starting on port {SERVICES[name]}", Colors.CYAN)
    return processes

def wait_for_ports(services, retries=30):
    log("\n[3/3] Verifying services...", Colors.BLUE, bold=True)
    all_up = True
    for name in services:
        port = SERVICES[name]
        healthy = False
        for _ in range(retries):
            try:
                with socket.create_connection(("localhost", port), timeout=1):
                    healthy = True
                    break
            except OSError:
                time.sleep(1)
        log(f"{name} on port {port}: {'UP' if healthy else 'TIMEOUT'}", Colors.GREEN if healthy else Colors.FAIL)
        all_up = all_up and healthy
    return all_up

# --- Main ---

def main():
    parser = argparse.ArgumentParser(description="Free ports and start the marketplace services")
    parser.add_argument("services", nargs="*", default=[],
                        help="Services to start (default: all)")
    parser.add_argument("--memory", action="store_true", help="Use the in-memory store (per process, so services do not share data)")
    parser.add_argument("--reload", action="store_true", help="Restart services on code changes")
    args = parser.parse_args()
    services = args.services or list(SERVICES)
    unknown = [s for s in services if s not in SERVICES]
    if unknown:
        parser.error(f"unknown service(s): {', '.join(unknown)}")

    env = dict(os.environ)
    if args.memory:
        # each process gets its own empty store
        env["STORE_BACKEND"] = "memory"

    clean_ports(services)
    processes = start_services(services, env, reload=args.reload)
    if not wait_for_ports(services):
        log("❌ Some services did not come up", Colors.FAIL)

    log("\nPress Ctrl+C to stop.", Colors.CYAN)
    try:
        for proc in processes:
            proc.wait()
    finally:
        for proc in processes:
            proc.terminate()

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log("\nStopped.", Colors.WARNING)
        sys.exit(0)
