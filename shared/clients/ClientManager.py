from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig


class ClientManager:
    """Resolves the backend client for one client type from `<TYPE>_ENGINE`.

    The engine name selects the module `shared.clients.<type>.<engine>.<Prefix><Engine>`,
    so adding a backend needs no change here. Subclasses set the type and class prefix.
    """

    client_type: str = ""
    class_prefix: str = ""
    default_engine: str | None = None

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val(f"{self.client_type.upper()}_ENGINE", default=self.default_engine)
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> ClientInterface:
        """
        Raises:
            ValueError: If no module or class exists for the configured engine.
        """
        engine = self._get_engine_from_env()
        class_name = f"{self.class_prefix}{engine}"
        module_path = f"shared.clients.{self.client_type}.{engine.lower()}.{class_name}"
        try:
            client_class = getattr(__import__(module_path, fromlist=[class_name]), class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported {self.client_type} engine '{engine}': {e}")
        self.logging.debug("Using %s client %s", self.client_type, class_name)
        return client_class(helper_config=self.helper_config)

    def get_client(self) -> ClientInterface:
        return self.client
