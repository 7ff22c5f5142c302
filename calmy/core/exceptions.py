class ChatGatewayError(Exception):
    """Base class for failures the gateway reports as 'assistant unavailable'."""


class ConversationStoreError(ChatGatewayError):
    """Reading or writing conversation rows failed."""


class GenerationError(ChatGatewayError):
    """The language-model provider failed, timed out or could not be reached."""


class AuthenticationError(Exception):
    """The caller could not be authenticated or is not the claimed user."""
