"""
Heartstream

Relays heart-rate samples from a sensor stream to a private log and a public share stream.
"""

# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only

__version__ = "0.1.0"
__author__ = "Heartstream contributors"

__all__ = ["__version__", "__author__"]
