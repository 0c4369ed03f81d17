"""
Host Watch - host monitoring agent with chat, email and WebSocket alerts
"""

__version__ = "1.0.0"
