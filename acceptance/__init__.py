"""Acceptance harness for the node and label parameter plugin.

Drives a live server over its JSON API (builds, queue, agents) and over
the job configuration UI through Playwright page objects.
"""

__version__ = "0.1.0"
