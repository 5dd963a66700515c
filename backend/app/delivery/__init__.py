"""Live delivery of chat events to connected sessions.

Events are best effort: a recipient without a live session simply picks
the message up on its next history fetch.
"""
