"""Crewpilot - supervision core for Team Lead / Runner agent workflows.

Observes runner panes through a terminal backend, classifies their state,
tracks liveness, and exposes recovery analysis and memory search.
"""

__version__ = "0.1.0"
