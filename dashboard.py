#!/usr/bin/env python3
"""
labdash -- GitLab CI pipelines in the terminal
===============================================
Pipeline list -> job list -> live job log, refreshed in the background.

Usage:
    python dashboard.py --demo                  # synthetic data (no GitLab needed)
    python dashboard.py                         # reads ./config.yaml
    python dashboard.py -c ~/labdash.yaml --debug
"""

from __future__ import annotations

from labdash.cli import main

if __name__ == "__main__":
    main()
