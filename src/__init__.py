"""
Spenly Chat Intake - Source Package

Turns free-form chat messages (text or a single receipt photo) sent over a
messaging relay into structured expense records for the companion app.

DESIGN PRINCIPLES:
1. AI decides → heuristics verify or take over
2. Every inbound message gets a reply
3. A link code is consumed at most once
4. Nothing with an amount of zero or less is ever persisted
5. Storage, oracle and relay are injected and swappable
"""

__version__ = "1.0.0"
__author__ = "Spenly Team"
