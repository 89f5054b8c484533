"""AWS Bedrock client wrapper for streaming text completion."""

import asyncio
import json
import logging
import os
import base64
from typing import AsyncIterator, Dict, List, Optional, Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError

from .errors import UpstreamCompletionError

logger = logging.getLogger(__name__)

_API_KEY_SECRET_CACHE: Dict[str, str] = {}

_STREAM_END = object()


class BedrockClient:
    """
    Wrapper for the AWS Bedrock Runtime client.

    Streams completions through the ConverseStream API. Each prompt gets a
    single attempt: botocore retries are disabled and failures surface as
    UpstreamCompletionError.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        model_id: str = "amazon.nova-pro-v1:0",
        timeout: int = 3600,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        runtime: Optional[Any] = None,
    ):
        """
        Initialize Bedrock client.

        Args:
            region: AWS region for Bedrock service
            model_id: Model ID used for every conversation turn
            timeout: Connect/read timeout in seconds
            max_tokens: Maximum tokens to generate per prompt
            temperature: Sampling temperature (0.0 = deterministic)
            runtime: Pre-built bedrock-runtime client (tests inject a stub)
        """
        self.region = region
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature

        if runtime is not None:
            self.runtime = runtime
            return

        self._bearer_token = self._resolve_bearer_token(region)
        self._using_bearer_token = bool(self._bearer_token)
        if self._using_bearer_token and not os.getenv("AWS_BEARER_TOKEN_BEDROCK"):
            os.environ["AWS_BEARER_TOKEN_BEDROCK"] = self._bearer_token

        if self._using_bearer_token:
            logger.info("BedrockClient configured to use Amazon Bedrock API key authentication")
        else:
            logger.info("BedrockClient configured to use AWS IAM credentials (SigV4)")

        config_kwargs: Dict[str, Any] = {
            "region_name": region,
            "connect_timeout": timeout,
            "read_timeout": timeout,
            "retries": {"max_attempts": 0},
        }
        if self._using_bearer_token:
            config_kwargs["signature_version"] = "bearer"

        self.runtime = boto3.client("bedrock-runtime", config=Config(**config_kwargs))

        logger.info(f"Initialized BedrockClient: region={region}, model={model_id}")

    def _resolve_bearer_token(self, region: str) -> Optional[str]:
        """
        Resolve the bearer token for Bedrock authentication.

        Order of precedence:
        1. AWS_BEARER_TOKEN_BEDROCK / BEDROCK_API_KEY environment variables.
        2. Secret fetched from AWS Secrets Manager when BEDROCK_API_KEY_SECRET_NAME (or ARN) is provided.

        Args:
            region: Default region to use for Secrets Manager fallback.

        Returns:
            Bearer token string if available, otherwise None.
        """
        direct_token = os.getenv("AWS_BEARER_TOKEN_BEDROCK") or os.getenv("BEDROCK_API_KEY")
        if direct_token:
            return direct_token.strip()

        secret_name = os.getenv("BEDROCK_API_KEY_SECRET_NAME") or os.getenv("BEDROCK_API_KEY_SECRET_ARN")
        if not secret_name:
            return None

        if secret_name in _API_KEY_SECRET_CACHE:
            return _API_KEY_SECRET_CACHE[secret_name]

        secrets_region = os.getenv("AWS_SECRETS_MANAGER_REGION", region)

        try:
            session = boto3.session.Session(profile_name=os.getenv("AWS_SECRETS_MANAGER_PROFILE") or None)
            client = session.client("secretsmanager", region_name=secrets_region)
            response = client.get_secret_value(SecretId=secret_name)

            secret_value = self._extract_secret_value(response)
            if secret_value:
                _API_KEY_SECRET_CACHE[secret_name] = secret_value
                logger.info("Loaded Bedrock API key from AWS Secrets Manager secret '%s'", secret_name)
                return secret_value

            logger.warning("Secrets Manager secret '%s' did not contain a usable Bedrock API key", secret_name)
        except NoCredentialsError:
            logger.error(
                "Unable to locate AWS credentials while retrieving Bedrock API key secret '%s'",
                secret_name,
            )
        except ClientError as exc:
            logger.error("Failed to retrieve Bedrock API key from secret '%s': %s", secret_name, exc)

        return None

    @staticmethod
    def _extract_secret_value(response: Dict[str, Any]) -> Optional[str]:
        """
        Extract the API key string from a Secrets Manager response.
        Supports plain string secrets, JSON objects, and binary secrets.
        """
        secret_string = response.get("SecretString")
        if secret_string:
            try:
                data = json.loads(secret_string)
                if isinstance(data, dict):
                    for candidate_key in ("bedrock_api_key", "api_key", "AWS_BEARER_TOKEN_BEDROCK", "bearer_token"):
                        value = data.get(candidate_key)
                        if isinstance(value, str) and value.strip():
                            return value.strip()
            except json.JSONDecodeError:
                pass  # plain string secret

            if secret_string.strip():
                return secret_string.strip()

        secret_binary = response.get("SecretBinary")
        if secret_binary:
            decoded = base64.b64decode(secret_binary).decode("utf-8").strip()
            if decoded:
                return decoded

        return None

    def _build_params(self, prompt: str, system_prompts: Optional[List[str]] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "modelId": self.model_id,
            "messages": [{"role": "user", "content": [{"text": prompt}]}],
            "inferenceConfig": {
                "temperature": self.temperature,
                "maxTokens": self.max_tokens
            }
        }
        if system_prompts:
            params["system"] = [{"text": text} for text in system_prompts]
        return params

    async def stream_converse(
        self,
        prompt: str,
        system_prompts: Optional[List[str]] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a completion for ``prompt`` via the ConverseStream API.

        The blocking boto3 event stream is read on a worker thread, one
        event at a time, so every chunk is a suspension point for the loop.

        Args:
            prompt: Full prompt text sent as a single user message
            system_prompts: Optional system prompt texts

        Yields:
            Text deltas in arrival order

        Raises:
            UpstreamCompletionError: If the request or the stream fails
        """
        params = self._build_params(prompt, system_prompts)

        try:
            response = await asyncio.to_thread(self.runtime.converse_stream, **params)
            events = iter(response.get("stream", []))

            while True:
                event = await asyncio.to_thread(next, events, _STREAM_END)
                if event is _STREAM_END:
                    break

                if "contentBlockDelta" in event:
                    text = event["contentBlockDelta"].get("delta", {}).get("text")
                    if text:
                        yield text
                elif "messageStop" in event:
                    logger.debug(f"Bedrock stream stopped: {event['messageStop'].get('stopReason')}")
                elif "metadata" in event:
                    logger.info(f"Bedrock stream usage: {event['metadata'].get('usage')}")
                else:
                    for error_key in ("internalServerException", "modelStreamErrorException",
                                      "throttlingException", "validationException",
                                      "serviceUnavailableException"):
                        if error_key in event:
                            raise UpstreamCompletionError.from_exception(
                                RuntimeError(event[error_key].get("message", error_key)),
                                operation="converse_stream",
                            )

        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Bedrock ConverseStream failed: {error_code}")
            raise UpstreamCompletionError.from_client_error(error=e, operation="converse_stream") from e
