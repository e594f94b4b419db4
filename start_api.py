#!/usr/bin/env python3
"""
Sierre API Startup Script

This script starts the Sierre FastAPI server for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the Sierre API server."""
    print("Starting Sierre API Server...")
    print("Features:")
    print("   - Shopify OAuth connect / disconnect")
    print("   - Order and product sync, backfill")
    print("   - Shopify webhook ingestion")
    print("   - KPIs and store insights")
    print("")
    print("Documentation will be available at:")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("")

    # Check for environment file
    env_file = Path(".env")
    if not env_file.exists():
        print("WARNING: No .env file found!")
        print("   Create a .env file with these variables:")
        print("   DATABASE_URL=sqlite:///./sierre.db")
        print("   JWT_SECRET=your-secret-key-here")
        print("   TOKEN_ENCRYPTION_KEY=<Fernet.generate_key()>")
        print("   SHOPIFY_API_KEY / SHOPIFY_API_SECRET / SHOPIFY_REDIRECT_URL")
        print("")

    try:
        uvicorn.run(
            "sierre.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["sierre"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nShutting down Sierre API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
