#!/usr/bin/env python3
"""
Monero Settlement Service - Entry Point

This script starts the FastAPI application (and with it the Monero
watcher) using uvicorn.
"""

import os
import uvicorn
from config import settings

def main():
    # Run the FastAPI application
    uvicorn.run(
        "settlement.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level=settings.LOG_LEVEL.lower()
    )

if __name__ == "__main__":
    main()
