"""
Spread Collector
================

Long-running service that samples the best bid/ask spread of one currency
pair on Independent Reserve, tracks the min/max spread per flush window and
appends one summary line per window to a log file.

Usage:
    python -m spreadbot -c spreadbot.toml run
"""

__version__ = "0.1.0"
__record_version__ = "1.0"
