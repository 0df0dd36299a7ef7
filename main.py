#!/usr/bin/env python3
"""
Restaurant seating service startup script.
Seeds an empty database and starts the FastAPI application.
"""

import uvicorn

from seating.init_db import init_database


def main():
    """Main startup function"""
    print("Starting restaurant seating service...")
    print("=" * 60)

    print("Initializing database...")
    init_database()

    print("\nAPI documentation at: http://localhost:8000/docs")
    print("Press Ctrl+C to stop the server")
    print("=" * 60)

    try:
        uvicorn.run(
            "seating.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nServer stopped.")


if __name__ == "__main__":
    main()
