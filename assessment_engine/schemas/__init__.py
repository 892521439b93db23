"""
Schemas module - stored records and API contracts.

Difference from plain dicts:
- Records (Assessment, Attempt, Event, Participant, ...) are what MongoDB holds
- Request/Response schemas are what the API accepts and returns

Everything lives in assessment_engine.schemas.schemas.
"""
