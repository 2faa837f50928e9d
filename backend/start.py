#!/usr/bin/env python3
"""
Startup script for the Hospital Portal backend.
This script can start the API server, check the environment, or wipe stored data.
"""

import os
import sys
import asyncio
import argparse
import subprocess
from pathlib import Path


def run_api(port=8000, reload=True):
    """Run the FastAPI server"""
    print("🚀 Starting FastAPI server...")
    cmd = [sys.executable, "-u", "-m", "uvicorn", "api.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")
    env = os.environ.copy()
    env["PYTHONUNBUFFERED"] = "1"
    return subprocess.Popen(
        cmd,
        cwd=Path(__file__).parent,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
        env=env
    )


async def clear_data():
    """Remove every portal collection (credentials included) and the session entry"""
    from core.services import create_services

    services = create_services()
    await services.start()
    try:
        await services.data.clear_all_data()
    finally:
        await services.close()


def can_clear_data(settings) -> bool:
    """clear-data only reaches data held by a persistent backend"""
    if settings.storage_backend == "memory":
        print("⚠️  STORAGE_BACKEND=memory keeps data inside the running API process, nothing to clear")
        print("💡 Restart the API server to start from empty storage")
        return False
    return True


def check_environment():
    """Check that the configured storage backend has what it needs"""
    from core.config import Settings

    settings = Settings.from_env()
    print(f"💾 Storage backend: {settings.storage_backend}")

    if settings.storage_backend == "mongo" and not os.getenv("MONGODB_URI"):
        print("❌ STORAGE_BACKEND=mongo but MONGODB_URI is not set")
        print("\n💡 Please check your .env.local file")
        return False

    print("✅ Environment variables configured")
    return True


def check_dependencies():
    """Check if required dependencies are installed"""
    try:
        import fastapi
        import motor
        import dateparser
        import werkzeug
        import itsdangerous
        print("✅ Dependencies installed")
        return True
    except ImportError as e:
        print(f"❌ Missing dependency: {e}")
        print("💡 Run: pip install -e .")
        return False


def main():
    parser = argparse.ArgumentParser(description="Hospital Portal Startup Script")
    parser.add_argument(
        "command",
        choices=["api", "check", "clear-data"],
        help="What to run: api server, check environment, or clear stored data"
    )
    parser.add_argument("--port", type=int, default=8000, help="API server port")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")

    args = parser.parse_args()

    # Load environment variables
    from dotenv import load_dotenv
    load_dotenv(".env.local")

    if args.command == "check":
        print("🔍 Checking system requirements...")
        env_ok = check_environment()
        deps_ok = check_dependencies()

        if env_ok and deps_ok:
            print("✅ System ready!")
            return 0
        else:
            print("❌ System not ready")
            return 1

    if not check_environment() or not check_dependencies():
        return 1

    if args.command == "clear-data":
        from core.config import Settings

        if not can_clear_data(Settings.from_env()):
            return 1

        print("🧹 Clearing all portal data...")
        asyncio.run(clear_data())
        print("✅ All data cleared")
        return 0

    process = run_api(args.port, reload=not args.no_reload)
    try:
        print("✅ API server starting... (logs below)\n")
        print(f"📖 API Docs: http://localhost:{args.port}/docs")
        # Stream output in real-time
        for line in iter(process.stdout.readline, ''):
            if not line:
                break
            print(line.rstrip())

        return_code = process.wait()
        if return_code != 0:
            print(f"\n❌ API server exited with code {return_code}")
            return 1
    except KeyboardInterrupt:
        print("\n🛑 Stopping API server...")
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    return 0


if __name__ == "__main__":
    sys.exit(main())
