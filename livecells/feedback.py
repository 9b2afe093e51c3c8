"""
Feedback pipeline: ask a chat model to review a cell's code and output.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from livecells.config import DEFAULT_PREFERRED_MODEL, LOCAL_FEEDBACK_URL, Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI Assistant, specialized in coding issues. "
    "You give concise answers, without asking further questions."
)
RUNTIME_PROMPT = "\nHere is the output of the python interpreter:\n"
CODE_PROMPT = (
    "Review the following Python code for errors and provide feedback. "
    "The code output, including any syntax errors, will be provided for detailed analysis. "
    "This is the source code of the user:\n"
)
RUBRIC_PROMPT = (
    "Your feedback should highlight both the strengths of the code and any potential errors, "
    "providing explanations where necessary. While you may offer tips for improvement, "
    "avoid providing exact code solutions. Focus on guiding the user towards better practices "
    "and understanding. Structure the feedback like this: Syntax errors: \n "
    "Strengths of the code: \n Potential improvements:\n "
)


class FeedbackError(Exception):
    """Base class for feedback failures shown to the user."""


class FeedbackCredentialMissing(FeedbackError):
    """No API key (or base URL) is configured; nothing was sent."""


class FeedbackNetworkError(FeedbackError):
    """The backend could not be reached or answered with an HTTP error."""


class FeedbackResponseShapeError(FeedbackError):
    """The backend answered, but without the fields we need."""


@dataclass
class FeedbackReply:
    content: str
    model: Optional[str] = None
    model_list: list[str] = field(default_factory=list)


def build_messages(runtime_output: str, source: str) -> list[dict[str, str]]:
    """Build the system + user message pair sent to every backend."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": RUNTIME_PROMPT + runtime_output + CODE_PROMPT + source + RUBRIC_PROMPT,
        },
    ]


def extract_content(payload: Any) -> str:
    """Return choices[0].message.content or raise FeedbackResponseShapeError."""
    if not isinstance(payload, dict):
        raise FeedbackResponseShapeError("response is not a JSON object")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise FeedbackResponseShapeError("'choices' field is missing or empty")
    try:
        content = choices[0]["message"]["content"]
    except (KeyError, TypeError):
        raise FeedbackResponseShapeError("'choices[0].message.content' is missing") from None
    if not isinstance(content, str) or not content:
        raise FeedbackResponseShapeError("'choices[0].message.content' is empty")
    return content


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        raise FeedbackResponseShapeError(
            f"{response.request.url} did not return JSON"
        ) from None


class FeedbackBackend(ABC):
    """A protocol for turning a message exchange into feedback text."""

    name = "backend"

    def __init__(self, timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self.transport)

    def ensure_configured(self):
        """Raise FeedbackCredentialMissing if a request cannot be made."""

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]]) -> FeedbackReply:
        ...


class RemoteModelBackend(FeedbackBackend):
    """
    OpenAI-compatible chat API.

    Lists the models at {base_url}/models, picks the preferred one if
    offered (else the first listed) and posts the exchange to
    {base_url}/chat/completions. Both calls carry the bearer key.
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        preferred_model: str = DEFAULT_PREFERRED_MODEL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.preferred_model = preferred_model

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def ensure_configured(self):
        if not self.api_key:
            raise FeedbackCredentialMissing("Please enter your API Key.")
        if not self.base_url:
            raise FeedbackCredentialMissing("Please enter your Base Url.")

    async def list_models(self, client: httpx.AsyncClient) -> list[str]:
        try:
            response = await client.get(f"{self.base_url}/models", headers=self.headers)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FeedbackNetworkError(f"Error when retrieving the model list: {e}") from e

        payload = _json(response)
        try:
            ids = [model["id"] for model in payload["data"]]
        except (KeyError, TypeError):
            raise FeedbackResponseShapeError("model list has no 'data' array of ids") from None
        if not ids:
            raise FeedbackResponseShapeError("model list is empty")
        return ids

    def select_model(self, model_ids: list[str]) -> str:
        if self.preferred_model in model_ids:
            return self.preferred_model
        return model_ids[0]

    async def complete(self, messages: list[dict[str, str]]) -> FeedbackReply:
        self.ensure_configured()
        async with self._client() as client:
            model_ids = await self.list_models(client)
            model = self.select_model(model_ids)
            logger.debug("Selected model %s from %d listed", model, len(model_ids))

            try:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json={"messages": messages, "model": model},
                )
                response.raise_for_status()
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise FeedbackNetworkError(f"Error requesting the API: {e}") from e

        content = extract_content(_json(response))
        return FeedbackReply(content=content, model=model, model_list=model_ids)


class LocalServerBackend(FeedbackBackend):
    """Feedback server on the local machine; it picks the model itself."""

    name = "local"

    def __init__(
        self,
        endpoint: str = LOCAL_FEEDBACK_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.endpoint = endpoint

    async def complete(self, messages: list[dict[str, str]]) -> FeedbackReply:
        async with self._client() as client:
            try:
                response = await client.post(self.endpoint, json={"messages": messages})
                response.raise_for_status()
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise FeedbackNetworkError(f"Error when requesting the API: {e}") from e

        payload = _json(response)
        content = extract_content(payload)
        model_list = payload.get("model_list") or []
        selected = payload.get("selected_model")
        logger.debug("Model list: %s", model_list)
        logger.debug("Selected model: %s", selected)
        return FeedbackReply(content=content, model=selected, model_list=list(model_list))


def make_backend(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> FeedbackBackend:
    """Pick the backend named by settings.backend."""
    if settings.backend == "local":
        return LocalServerBackend(
            settings.local_endpoint, timeout=settings.request_timeout, transport=transport
        )
    return RemoteModelBackend(
        settings.base_url,
        settings.api_key,
        preferred_model=settings.preferred_model,
        timeout=settings.request_timeout,
        transport=transport,
    )


class Notifier:
    """Receives user-facing alerts and prompts. Keeps them for inspection."""

    def __init__(self):
        self.alerts: list[str] = []
        self.prompts: list[str] = []

    def alert(self, message: str):
        self.alerts.append(message)
        logger.warning("Alert: %s", message)

    def prompt(self, message: str):
        self.prompts.append(message)
        logger.info("Prompt: %s", message)


class FeedbackPipeline:
    """
    Re-runs a target's code and asks the backend to review it.

    The run goes through the engine like any other run, so the lock
    is already released when the network calls start.
    """

    def __init__(self, engine, backend: FeedbackBackend, notifier: Optional[Notifier] = None):
        self.engine = engine
        self.backend = backend
        self.notifier = notifier or Notifier()

    async def request(self, target) -> bool:
        """
        Request feedback for target and render it.

        Returns:
            True if feedback was rendered
        """
        source = target.buffer.text
        outcome = await self.engine.execute(source, target, render=False)
        if outcome is None:
            logger.debug("Feedback for %s dropped: interpreter busy", target.id)
            return False

        try:
            self.backend.ensure_configured()
        except FeedbackCredentialMissing as e:
            self.notifier.prompt(str(e))
            return False

        target.feedback.clear()
        messages = build_messages(outcome.text, source)
        try:
            reply = await self.backend.complete(messages)
        except FeedbackResponseShapeError as e:
            logger.error("Feedback response for %s unusable: %s", target.id, e)
            self.notifier.alert(f"Error when retrieving feedback: {e}")
            return False
        except FeedbackError as e:
            logger.error("Feedback request for %s failed: %s", target.id, e)
            self.notifier.alert(str(e))
            return False

        target.feedback.show(reply.content)
        logger.info("Feedback rendered for %s (%d chars)", target.id, len(reply.content))
        return True
