"""
Test suite for the Appointment Scheduling Engine.

Contains unit and integration tests for slot generation, booking and the
appointment lifecycle.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
