#!/usr/bin/env python3
"""Cross-platform install script for sonar-bot.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes test tools)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"
    pip = os.path.join(venv_dir, "Scripts" if is_windows else "bin", "pip")

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    print("Upgrading pip...")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])

    target = ".[dev]" if dev else "."
    print(f"Installing sonar-bot ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", "-e", target] if dev else [pip, "install", target], cwd=project_dir)

    # Prompt presets are persisted here at runtime
    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)

    env_path = os.path.join(project_dir, ".env")
    example_path = os.path.join(project_dir, ".env.example")
    if not os.path.exists(env_path) and os.path.exists(example_path):
        shutil.copy(example_path, env_path)
        print("Created .env from .env.example")
    elif os.path.exists(env_path):
        print(".env already exists, skipping.")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  sonar-bot installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit .env - set your keys:")
    print("       PERPLEXITY_API_KEY=pplx-...")
    print("       TELEGRAM_BOT_TOKEN=...")
    print("  2. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print("  3. Check the configuration:")
    print("       python -m sonar_bot config-check")
    print("  4. Start the bot:")
    print("       python -m sonar_bot")
    print()


if __name__ == "__main__":
    main()
