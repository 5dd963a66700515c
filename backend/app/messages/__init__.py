"""Direct message storage and the history/send/mark-seen API.

Messages are persisted in DuckDB. Fetching a page of history also marks
the reader's unseen inbound messages in that page as seen.
"""
