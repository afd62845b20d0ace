"""
Standalone entry point for the runtime control service.
Run via:  python run_weichspielapparat.py
"""

from weichspielapparat.main import run_server

# defaults to 127.0.0.1:5151, see WEICHSPIELAPPARAT_SERVICE_HOST / _PORT
run_server()
