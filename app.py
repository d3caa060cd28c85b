#!/usr/bin/env python3
"""
Receipt Printer - Flask service for printing receipts on ESC/POS thermal printers
Runs on a Raspberry Pi or any host that can reach the printer over Bluetooth, serial or TCP
"""

import os

from receipt_printer import create_app

app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("RECEIPTPRINTER_PORT", "5000"))
    app.logger.info("Starting Receipt Printer on http://0.0.0.0:%d", port)
    app.logger.info("Press Ctrl+C to stop the server")
    app.run(host="0.0.0.0", port=port, debug=False)
