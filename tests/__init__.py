"""Tests for the Cartographer fog-of-war engine."""
