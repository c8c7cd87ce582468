from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError, LLMRequestFailedError


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_model())

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    def _get_error_class(self) -> type[DocIntelError]:
        return LLMRequestFailedError

    @abstractmethod
    def _get_default_model(self) -> str:
        """Returns the model used when LLM_MODEL is not set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Path of the chat endpoint below the base URL."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], temperature: float, max_tokens: int) -> dict:
        """Non-streaming request body for messages in role/content form.

        Engines map temperature and max_tokens to their own option names.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """
        Returns:
            str: The assistant text of a parsed chat answer, possibly empty.

        Raises:
            ValueError: If the answer has no assistant message at all.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], temperature: float = 0.3, max_tokens: int = 1000) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages.
            temperature (float): Sampling temperature.
            max_tokens (int): Upper bound of generated tokens.

        Returns:
            str: The assistant reply text.

        Raises:
            LLMRequestFailedError: If the request fails or the response has no reply.
        """
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=self.get_chat_payload(messages, temperature, max_tokens),
            raise_on_error=True,
        )
        try:
            return self.extract_chat_response(response.json())
        except ValueError as e:
            raise LLMRequestFailedError(str(e)) from e

    async def do_complete(self, system_prompt: str | None, user_prompt: str, temperature: float = 0.3, max_tokens: int = 1000) -> str:
        """Single-turn completion: optional system prompt plus one user prompt.

        Args:
            system_prompt (str | None): Instructions for the model, omitted when None.
            user_prompt (str): The user message.
            temperature (float): Sampling temperature.
            max_tokens (int): Upper bound of generated tokens.

        Returns:
            str: The assistant reply text.
        """
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return await self.do_chat(messages, temperature=temperature, max_tokens=max_tokens)
