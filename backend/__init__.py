"""
Renovation Tracker backend.

This package provides a FastAPI backend that serves the renovation tracker
core (scope hierarchy, tasks, workflow and indicators) to a browser UI.
"""
