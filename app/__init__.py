"""
Hospital Appointment Scheduler

A FastAPI-based service for booking appointments between patients and
doctors, with conflict detection and role-based access control.
"""

__version__ = "1.0.0"
