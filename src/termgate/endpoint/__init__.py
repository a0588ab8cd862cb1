"""HTTP and WebSocket transport for termgate.

Carries requests from the network into the command gateway. All
authorization happens in the gateway; this layer only maps identities,
client addresses and errors to and from HTTP.
"""
