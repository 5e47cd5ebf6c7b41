#!/usr/bin/env python3
"""
main.py - Quick-start entry point.

    python main.py generate --target photo.jpg --materials tiles/ --output out.png

Or use the full CLI:

    python -m tile_mosaic.cli generate --help
    python -m tile_mosaic.cli index --materials tiles/
"""

from tile_mosaic.cli import app

if __name__ == "__main__":
    app()
