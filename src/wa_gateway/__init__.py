"""
WhatsApp Gateway

Bridges a WhatsApp account (through a Node.js protocol bridge) to a local
reply backend, with owner pairing, an HTTP control surface and an
interactive console.
"""

__version__ = "0.1.0"
