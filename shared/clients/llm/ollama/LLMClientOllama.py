from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOllama(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[dict], stream: bool = True) -> dict:
        """Build the Ollama chat request body.

        Returns:
            dict: {"model": "...", "messages": [...], "stream": True, "options": {"temperature": ...}}
        """
        return {
            "model": self.chat_model,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": self.temperature},
        }

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_stream_chunk(self, chunk: dict) -> tuple[str, bool]:
        """Parse one NDJSON line of a streamed /api/chat response.

        Lines look like {"message": {"role": "assistant", "content": "..."}, "done": false};
        failures are reported as {"error": "..."}.
        """
        if "error" in chunk:
            raise ValueError(f"Ollama reported an error: {chunk['error']}")
        message = chunk.get("message")
        if message is None and not chunk.get("done"):
            raise ValueError(f"Unexpected Ollama chat chunk. Keys: {list(chunk.keys())}")
        content = (message or {}).get("content") or ""
        return content, bool(chunk.get("done"))
