"""stallwatch - stall detection and auto-recovery for long-running agent sessions.

Watches an agent's event stream, resumes the session when it goes quiet, and
reports when a human has to step in.
"""

__version__ = "0.1.0"
