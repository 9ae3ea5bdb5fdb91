"""
berets — declarative provisioning for the Black Berets Alpine workstation.
"""

__version__ = "0.1.0"
