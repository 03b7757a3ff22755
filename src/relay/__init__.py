"""Duplex relay between Twilio Media Streams and a realtime speech model.

One `DuplexRelayEngine` is created per accepted media-stream WebSocket; it owns
a single `CallSession` for the lifetime of the call.
"""
