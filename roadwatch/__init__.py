"""
RoadWatch AI - Incident Lifecycle & Verification Engine
Crowdsourced road incident reporting for Cameroon.
"""

__version__ = "1.0.0"
