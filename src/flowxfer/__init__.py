"""Flow-controlled file transfer over an unreliable UDP connection.

Two pieces sit on top of the connection:
- a send-rate controller that backs off when round-trip time climbs
- a whole-file transfer that carries metadata, data chunks and a completion
  sentinel on the same packet channel

Lost packets are never resent; a damaged transfer is reported when its
sentinel arrives.
"""

__all__ = []
