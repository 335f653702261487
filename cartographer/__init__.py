"""
Cartographer: Fog-of-War Computation Core
==========================================

Spatial index, geometry operations and tiered fog calculation for
exploration maps. The engine lives in ``cartographer.fog_of_war``.
"""

__version__ = "1.0.0"

__author__ = "Cartographer Team"
__license__ = "MIT"
