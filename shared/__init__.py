"""
Harald Shared Module
====================

Configuration, logging, console and HTTP plumbing used by the Harald
Bluetooth assessment tool.
"""

from shared.config import HaraldConfig, get_config

__all__ = ["HaraldConfig", "get_config"]
