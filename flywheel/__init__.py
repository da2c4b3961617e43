"""
Flywheel — manifest-driven provisioning for remote developer machines.
"""

__version__ = "0.1.0"
