"""
coffeechat - propose free calendar slots and send coffee chat invitations.
"""

__version__ = "0.1.0"
