"""
streamhub.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.cms import (
    AccessLink,
    ChatMessage,
    StreamSession,
    StreamSettings,
)
from streamhub.schemas.requests import (
    AccessLinkCreateRequest,
    ChatPostRequest,
    ValidateTokenRequest,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
