"""
Pydantic schemas for API request and response validation.

Chat payloads use camelCase aliases on the wire; both camelCase and
snake_case are accepted on input.
"""
