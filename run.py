#!/usr/bin/env python3
"""
A simple script to run the receipt ingestion service.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from app import create_app
    from config.settings import ReceiptOCRSettings
    from utils.logging_config import setup_logging

    settings = ReceiptOCRSettings()
    setup_logging(log_dir=settings.log_dir, debug_mode=settings.debug, log_to_file=True)
    app = create_app(settings)

    port = int(os.getenv('FLASK_PORT', '5000'))

    print(f"Starting receipt ingestion service on http://localhost:{port}")
    print("Press Ctrl+C to stop the server")

    # The reloader would start a second engine pool in the child process
    app.run(debug=settings.debug, port=port, host='0.0.0.0', use_reloader=False)
