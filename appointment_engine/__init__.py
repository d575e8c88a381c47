"""
Appointment Scheduling Engine

A FastAPI-based service that generates bookable slots from clinician
schedules, books them atomically and drives appointments through their
lifecycle with role-based transition rules.
"""

__version__ = "1.0.0"
