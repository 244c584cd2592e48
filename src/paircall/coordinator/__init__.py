"""Coordinator: pairing queue, pair table, signaling relay and sweeper.

All shared state lives in one ``MatchmakingService`` instance; transports
and the sweeper call into it.
"""
