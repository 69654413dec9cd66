"""Descriptor matching, EPnP and Sim3 solvers, and contour region properties for visual SLAM."""

__version__ = "0.1.0"