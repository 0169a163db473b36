"""
Shared package for the TalkSync chat relay.

This package contains the pieces used by both sides of a connection:
- Wire event names and limits
- Message records and event builders
- Line-delimited JSON codec
"""
