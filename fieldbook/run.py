#!/usr/bin/env python3
"""
Quick start script for the dog field booking API
"""

import os
import sys
from pathlib import Path

# Project root on the path so "fieldbook" imports resolve when run directly
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("BACKEND_PORT", 8000))
    host = os.getenv("BACKEND_HOST", "0.0.0.0")

    print("🚀 Starting Dog Field Booking API...")
    print(f"📡 Server will be available at http://{host}:{port}")
    print(f"📚 API docs at http://{host}:{port}/docs")

    uvicorn.run(
        "fieldbook.main:app",
        host=host,
        port=port,
        reload=os.getenv("DEBUG", "False").lower() == "true",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
