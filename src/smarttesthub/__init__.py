"""
smarttesthub-harness - package root

File: src/smarttesthub/__init__.py
Last updated: 2026-10-19

Purpose
- Package root for the smart-contract CI harness (EVM and Solana toolchains).

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
