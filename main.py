#!/usr/bin/env python3
"""
Main entry point for the Transit Midpoint API (development server)
"""

from transit_midpoint.app import app
from transit_midpoint.settings import settings

if __name__ == '__main__':
    app.run(debug=True, host=settings.HOST, port=settings.PORT)
