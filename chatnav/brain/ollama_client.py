"""
HTTP client for the Ollama API, used by the constrained arbitrator.
Non-streaming JSON-mode generation with a per-request timeout.
"""
import json
import socket
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from chatnav.core.logger import get_logger


class OllamaClient:
    """Client for the Ollama /api/generate endpoint."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        timeout: float = 5.0
    ):
        """
        Initialize Ollama HTTP client.

        Args:
            base_url: Ollama API base URL (e.g., http://127.0.0.1:11434)
            timeout: Default socket timeout for requests in seconds
        """
        self.logger = get_logger()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        # Reusable opener so keep-alive connections are shared across calls
        self.opener = urllib.request.build_opener(
            urllib.request.HTTPHandler(debuglevel=0),
            urllib.request.HTTPSHandler(debuglevel=0)
        )

    def ping(self) -> bool:
        """
        Check if Ollama server is running and accessible.

        Returns:
            True if Ollama is reachable, False otherwise
        """
        try:
            start_time = time.time()
            req = urllib.request.Request(f"{self.base_url}/api/tags", method="GET")
            with self.opener.open(req, timeout=2) as response:
                data = json.loads(response.read().decode("utf-8"))
                models = [m.get("name", "") for m in data.get("models", [])]
                elapsed_ms = int((time.time() - start_time) * 1000)
                self.logger.debug(f"[OLLAMA] ping ok ({elapsed_ms}ms) models={models}")
                return True
        except (urllib.error.URLError, OSError, ValueError) as e:
            self.logger.debug(f"[OLLAMA] ping failed: {e}")
            return False

    def generate_json(
        self,
        prompt: str,
        model: str,
        options: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Generate a JSON object from Ollama (non-streaming, format=json).

        Args:
            prompt: Input prompt text
            model: Model name to use
            options: Generation options (temperature, num_predict, ...)
            timeout: Socket timeout override in seconds

        Returns:
            The model's reply parsed as a JSON object

        Raises:
            ConnectionError: If Ollama cannot be reached or times out
            ValueError: If the model is missing or the reply is not a JSON object
        """
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": options or {}
        }

        req = urllib.request.Request(
            f"{self.base_url}/api/generate",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Connection": "keep-alive"
            },
            method="POST"
        )

        start_time = time.time()
        try:
            with self.opener.open(req, timeout=timeout or self.timeout) as response:
                response_data = json.loads(response.read().decode("utf-8"))

        except urllib.error.HTTPError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            error_body = ""
            try:
                error_body = e.read().decode("utf-8")
            except OSError:
                pass

            self.logger.error(f"[OLLAMA] HTTP {e.code} after {elapsed_ms}ms: {error_body}")
            if e.code == 404 or "model" in error_body.lower():
                raise ValueError(f"Model '{model}' not found. Try: ollama pull {model}") from e
            raise ConnectionError(f"Ollama HTTP error: {e.code}") from e

        except urllib.error.URLError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            self.logger.warning(f"[OLLAMA] connection error after {elapsed_ms}ms: {e}")
            if "Connection refused" in str(e):
                raise ConnectionError(f"Cannot reach Ollama at {self.base_url}. Try: ollama serve") from e
            raise ConnectionError(f"Network error: {e}") from e

        except (socket.timeout, TimeoutError) as e:
            raise ConnectionError(f"Ollama timed out after {timeout or self.timeout}s") from e

        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON envelope from Ollama: {e}") from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        self.logger.debug(
            f"[OLLAMA] generate completed in {elapsed_ms}ms "
            f"(prompt_tokens={response_data.get('prompt_eval_count', 0)}, "
            f"eval_tokens={response_data.get('eval_count', 0)})"
        )

        text = (response_data.get("response") or "").strip()
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Model reply is not JSON: {text[:100]!r}") from e
        if not isinstance(parsed, dict):
            raise ValueError(f"Model reply is not a JSON object: {text[:100]!r}")
        return parsed
