"""Chat module — one bot response per user turn.

Budgeted context assembly (intent, audience, memories, documents, history,
planner output), prompt rendering, and streamed delivery to the client.
"""
