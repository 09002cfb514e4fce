#!/usr/bin/env python3
"""
Thin wrapper so the container / CI can simply call `python wrapper.py`
instead of `python -m trend_sweep`
"""
from trend_sweep.app import cli

if __name__ == "__main__":
    raise SystemExit(cli())
