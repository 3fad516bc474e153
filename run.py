"""Launch the gateway API with uvicorn."""
import os
import subprocess
import sys
from pathlib import Path


def main():
    root = Path(__file__).parent
    (root / "data").mkdir(parents=True, exist_ok=True)

    is_docker = os.environ.get("DOCKER", "0") == "1"
    host = "0.0.0.0" if is_docker else "127.0.0.1"
    port = os.environ.get("PORT", "8000")

    print(f"Starting provider gateway on http://{host}:{port} ...")
    cmd = [
        sys.executable, "-m", "uvicorn", "gateway.main:app",
        "--host", host, "--port", port,
    ]
    if not is_docker:
        cmd.append("--reload")

    server = subprocess.Popen(cmd, cwd=str(root))
    try:
        server.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.terminate()
        server.wait()


if __name__ == "__main__":
    main()
