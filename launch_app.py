from __future__ import annotations

import hashlib
import os
import subprocess
import sys
import venv
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent
VENV_DIR = PROJECT_ROOT / ".venv"
PROJECT_FILE = PROJECT_ROOT / "pyproject.toml"
INSTALL_MARKER = VENV_DIR / ".project.installed"
APP_ENTRYPOINT = PROJECT_ROOT / "app" / "main.py"


def venv_python() -> Path:
    if os.name == "nt":
        return VENV_DIR / "Scripts" / "python.exe"
    return VENV_DIR / "bin" / "python"


def ensure_virtualenv() -> None:
    if VENV_DIR.exists() and venv_python().exists():
        return
    print(f"[launcher] Creating virtual environment at {VENV_DIR}...")
    venv.EnvBuilder(with_pip=True).create(VENV_DIR)


def project_signature() -> str:
    if not PROJECT_FILE.exists():
        raise FileNotFoundError(f"Project file not found: {PROJECT_FILE}")
    return hashlib.sha256(PROJECT_FILE.read_bytes()).hexdigest()


def ensure_installed() -> None:
    signature = project_signature()
    if INSTALL_MARKER.exists() and INSTALL_MARKER.read_text().strip() == signature:
        print("[launcher] Dependencies satisfied.")
        return
    print("[launcher] Installing pharmacy capacity tracker into the virtual environment...")
    subprocess.check_call([str(venv_python()), "-m", "pip", "install", "-e", str(PROJECT_ROOT)])
    INSTALL_MARKER.write_text(signature)


def launch_app(argv: list[str]) -> int:
    ensure_virtualenv()
    ensure_installed()
    if not APP_ENTRYPOINT.exists():
        raise FileNotFoundError(f"App entrypoint not found: {APP_ENTRYPOINT}")
    print("[launcher] Starting capacity API...")
    return subprocess.call([str(venv_python()), str(APP_ENTRYPOINT), *argv])


if __name__ == "__main__":
    try:
        exit_code = launch_app(sys.argv[1:])
    except subprocess.CalledProcessError as exc:
        print(f"[launcher] Command failed with exit code {exc.returncode}", file=sys.stderr)
        sys.exit(exc.returncode)
    except Exception as exc:
        print(f"[launcher] {exc}", file=sys.stderr)
        sys.exit(1)
    else:
        sys.exit(exit_code)
