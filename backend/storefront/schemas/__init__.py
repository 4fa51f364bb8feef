# Request/response schemas (Pydantic v2), camelCase on the wire
