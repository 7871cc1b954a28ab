from abc import abstractmethod
from typing import AsyncIterator
import json

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.exceptions.errors import CompassError, ProviderUnavailable
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=None)
        self.temperature = helper_config.get_number_val(f"{self.get_client_type().upper()}_TEMPERATURE", default=0.2)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ERRORS ##################
    def _get_unavailable_error(self) -> type[CompassError]:
        return ProviderUnavailable

    def _get_rejected_error(self) -> type[CompassError]:
        return ProviderUnavailable

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], stream: bool = True) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            stream (bool): Request an incremental response.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_stream_chunk(self, chunk: dict) -> tuple[str, bool]:
        """Extract the text delta of one streamed response line.

        Args:
            chunk (dict): One parsed line of the streamed response.

        Returns:
            tuple[str, bool]: The text delta (may be empty) and whether the stream is finished.

        Raises:
            ValueError: If the line reports an error or has an unexpected shape.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat_stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream the assistant reply token by token.

        Closing the generator (e.g. on client disconnect) closes the underlying HTTP stream.

        Args:
            messages (list[dict]): OpenAI-format messages.

        Yields:
            str: Non-empty text deltas in generation order.

        Raises:
            ProviderUnavailable: If the stream cannot be opened, breaks off or reports an error.
        """
        body = self.get_chat_payload(messages, stream=True)
        async with self.do_stream_request(method="POST", json=body, endpoint=self._get_endpoint_chat()) as response:
            try:
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    token, done = self.extract_stream_chunk(json.loads(line))
                    if token:
                        yield token
                    if done:
                        break
            except httpx.HTTPError as exc:
                self.logging.error("Chat stream from %s broke off: %s", self.get_engine_name(), exc)
                raise ProviderUnavailable("Chat stream broke off") from exc
            except ValueError as exc:
                self.logging.error("Chat stream from %s returned an invalid line: %s", self.get_engine_name(), exc)
                raise ProviderUnavailable("Chat stream returned an invalid response") from exc
