"""EventSub webhook inbound path.

Each notification is signature-verified, checked for replay and duplicates,
acknowledged, then dispatched to lifecycle state after the response.
"""
