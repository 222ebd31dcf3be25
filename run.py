#!/usr/bin/env python3
"""
Entry point for the YGOHub service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, testing or production (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL: PostgreSQL connection string
    REDIS_URL: Optional, enables event publishing
"""
import os

from ygohub.app import create_app


def main():
    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting YGOHub on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    main()
