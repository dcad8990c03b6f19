#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Without GOOGLE_CALENDAR_ACCESS_TOKEN the app books against the in-memory
fake calendar, so this is safe to start on a laptop.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    print("Starting booking API at http://localhost:8000 (docs at /docs)")
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
