"""AIGO agent: a ReAct chat backend that streams its reasoning as NDJSON steps."""
