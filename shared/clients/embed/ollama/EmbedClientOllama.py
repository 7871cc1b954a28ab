from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    """Embeds chunk and query text through a local or remote Ollama server."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._truncate = self.get_config_val("TRUNCATE", default=True, val_type="bool")
        self._keep_alive = self.get_config_val("KEEP_ALIVE", default="", val_type="string")

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
            EnvConfig(env_key="TRUNCATE", val_type="bool", default=True),
            EnvConfig(env_key="KEEP_ALIVE", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def get_endpoint_model_details(self) -> str:
        return "/api/show"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        payload = {"model": self.embed_model, "input": texts, "truncate": self._truncate}
        # unset keeps the server's own unload timer
        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive
        return payload

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_vector_size_from_model_info(self, model_info: dict) -> int:
        details: dict = model_info.get("model_info") or {}
        sizes = [int(value) for key, value in details.items() if key.endswith(".embedding_length")]
        if not sizes:
            raise ValueError(f"Model '{self.embed_model}' reports no embedding length")
        return sizes[0]

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Read the vectors of an /api/embed answer.

        All vectors must be non-empty and share one dimension; a model that
        answers with mixed sizes cannot be stored in a single collection.

        Raises:
            ValueError: If the answer holds no vectors or vectors of differing size.
        """
        embeddings = response_data.get("embeddings")
        if not embeddings:
            raise ValueError(f"No embeddings in answer (keys: {sorted(response_data)})")
        dimensions = {len(vector) for vector in embeddings}
        if 0 in dimensions or len(dimensions) != 1:
            raise ValueError(f"Embeddings have inconsistent dimensions {sorted(dimensions)}")
        return embeddings
