#!/usr/bin/env python3
"""
Start the law practice API.

Runs preflight checks against the configured database, document storage and
OCR engine, then hands over to uvicorn.
"""

import argparse
import shutil
import sys
from pathlib import Path

import uvicorn

def check_settings(settings) -> bool:
    """Refuse to start in production with the placeholder secret."""
    if not settings.debug and settings.secret_key == "your_secret_key_here":
        print("❌ SECRET_KEY is still the placeholder; set it in .env before running with DEBUG=false")
        return False
    print(f"✅ Settings loaded (debug={settings.debug})")
    return True

def check_database() -> bool:
    from lawpractice.database import database_is_healthy, init_db

    if not database_is_healthy():
        print("❌ Database is not reachable; check DATABASE_URL")
        return False
    init_db()
    print("✅ Database reachable and schema created")
    return True

def check_storage(settings) -> bool:
    storage = Path(settings.document_storage_path)
    storage.mkdir(parents=True, exist_ok=True)
    probe = storage / ".write-test"
    try:
        probe.write_text("ok")
        probe.unlink()
    except OSError as e:
        print(f"❌ Document storage {storage} is not writable: {e}")
        return False
    print(f"✅ Document storage at {storage.resolve()}")
    return True

def check_ocr(settings):
    if not settings.ocr_enabled:
        print("ℹ️  OCR disabled; scanned images will be stored without text")
    elif settings.tesseract_cmd or shutil.which("tesseract"):
        print(f"✅ OCR enabled ({settings.ocr_languages})")
    else:
        print("⚠️  OCR enabled but tesseract was not found; scanned images will not be indexed")

def main():
    parser = argparse.ArgumentParser(description="Law Practice Management System")
    parser.add_argument("--host", default=None, help="Host to bind to (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: API_PORT)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes")
    parser.add_argument("--log-level", default="info", help="Log level")
    parser.add_argument("--check-only", action="store_true", help="Run the preflight checks and exit")
    args = parser.parse_args()

    from lawpractice.config import settings

    print("🏛️  Law Practice Management System")
    ready = check_settings(settings) and check_storage(settings) and check_database()
    if not ready:
        sys.exit(1)
    check_ocr(settings)

    if args.check_only:
        print("✅ Preflight checks passed")
        return

    host = args.host or settings.api_host
    port = args.port or settings.api_port
    print(f"🚀 Serving on http://{host}:{port} (docs at /docs when DEBUG=true)")

    uvicorn.run(
        "lawpractice.main:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=1 if args.reload else args.workers,
        log_level=args.log_level,
    )

if __name__ == "__main__":
    main()
