# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module implements the x402 payment gate in front of the content origin,
enabling pay-per-request access to gated posts and the priced test endpoint.

Key components:
- policy: Per-request access policy table (free, priced and gated paths)
- facilitator: Facilitator client construction (plain URL or managed CDP)
- middleware: FastAPI middleware for payment verification and settlement

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
