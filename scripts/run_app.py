#!/usr/bin/env python
"""
Run the Streamlit quote builder.

Usage:
    python scripts/run_app.py [--port 8501] [--data-dir ./data]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path

UI_MODULE = Path('src') / 'service_pricing' / 'ui' / 'app_streamlit.py'


def main():
    parser = argparse.ArgumentParser(description="Run the Service Pricing quote builder")
    parser.add_argument("--port", default=os.environ.get("PRICING_UI_PORT", "8501"))
    parser.add_argument("--data-dir", type=Path, help="workbook/settings storage (PRICING_DATA_DIR)")
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent
    ui_path = project_root / UI_MODULE
    if not ui_path.exists():
        print(f"ERROR: quote builder not found at {ui_path}")
        sys.exit(1)

    env = os.environ.copy()
    if args.data_dir:
        env["PRICING_DATA_DIR"] = str(args.data_dir.resolve())

    cmd = [sys.executable, '-m', 'streamlit', 'run', str(ui_path), '--server.port', str(args.port)]
    print(f"Starting quote builder: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, cwd=str(project_root), env=env)
    except KeyboardInterrupt:
        print("\nQuote builder stopped.")


if __name__ == "__main__":
    main()
