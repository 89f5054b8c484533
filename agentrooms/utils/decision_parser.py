"""Tolerant extraction of decision fields from free-text model output."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionDecision:
    """Parsed result of a selection prompt."""
    next_agent: Optional[str]
    rationale: str

    @property
    def is_malformed(self) -> bool:
        return not self.next_agent


@dataclass(frozen=True)
class TerminationDecision:
    """Parsed result of a termination prompt."""
    reason: str
    should_terminate: bool
    found: bool = True

    @property
    def is_malformed(self) -> bool:
        return not self.found


class DecisionParser:
    """
    Utility class for pulling decision fields out of model output.

    Model output is not guaranteed to be well-formed JSON: it may carry
    code fences, commentary around the object, or be cut off. Extraction
    therefore tries a strict parse of the cleaned object first and falls
    back to scanning for the key, so valid-but-imperfect output still
    yields a value.
    """

    @staticmethod
    def clean_json_response(response: str) -> str:
        """
        Clean a model response down to its JSON object.

        Removes surrounding backticks and a leading ``json`` tag, then keeps
        the text from the first ``{`` to the last ``}`` when both exist.

        Args:
            response: Raw response text

        Returns:
            Cleaned response text
        """
        if not response:
            return ""

        cleaned = response.strip().strip('`').strip()

        if cleaned[:4].lower() == "json":
            cleaned = cleaned[4:].strip()

        start_idx = cleaned.find('{')
        end_idx = cleaned.rfind('}')
        if start_idx >= 0 and end_idx >= start_idx:
            cleaned = cleaned[start_idx:end_idx + 1]

        return cleaned

    @staticmethod
    def _load_object(text: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _key_pattern(key: str) -> "re.Pattern[str]":
        return re.compile(r'"' + re.escape(key) + r'"\s*:')

    @staticmethod
    def extract_field(text: str, key: str) -> Optional[str]:
        """
        Extract a string value for ``key``.

        After a strict parse fails, locates ``"key":`` and returns the text
        between the first and second double quote that follow it.

        Args:
            text: Model output (raw or cleaned)
            key: Bare key name, e.g. ``nextAgent``

        Returns:
            The trimmed value, or None if the key or its quotes are missing
        """
        if not text:
            return None

        cleaned = DecisionParser.clean_json_response(text)
        data = DecisionParser._load_object(cleaned)
        if data is not None and isinstance(data.get(key), str):
            return data[key].strip()

        match = DecisionParser._key_pattern(key).search(cleaned)
        if match is None:
            return None

        value_start = cleaned.find('"', match.end())
        if value_start == -1:
            return None
        value_end = cleaned.find('"', value_start + 1)
        if value_end == -1:
            return None

        return cleaned[value_start + 1:value_end].strip()

    @staticmethod
    def extract_bool(text: str, key: str) -> bool:
        """
        Extract a boolean value for ``key``.

        The value is read up to the next comma or closing brace and parsed
        case-insensitively. Anything unparseable counts as False.

        Args:
            text: Model output (raw or cleaned)
            key: Bare key name, e.g. ``shouldTerminate``

        Returns:
            Parsed boolean, False when missing or unparseable
        """
        value = DecisionParser._raw_bool_value(text, key)
        return value is True

    @staticmethod
    def _raw_bool_value(text: str, key: str) -> Optional[bool]:
        if not text:
            return None

        cleaned = DecisionParser.clean_json_response(text)
        data = DecisionParser._load_object(cleaned)
        if data is not None and key in data:
            return DecisionParser._parse_bool(data[key])

        match = DecisionParser._key_pattern(key).search(cleaned)
        if match is None:
            return None

        remainder = cleaned[match.end():].strip()
        for terminator in (",", "}"):
            end_idx = remainder.find(terminator)
            if end_idx != -1:
                remainder = remainder[:end_idx]
                break

        return DecisionParser._parse_bool(remainder)

    @staticmethod
    def _parse_bool(value: Any) -> Optional[bool]:
        if isinstance(value, bool):
            return value
        if not isinstance(value, str):
            return None
        token = value.strip().strip('"').strip().lower()
        if token == "true":
            return True
        if token == "false":
            return False
        return None

    @staticmethod
    def extract_selection(text: str) -> SelectionDecision:
        """
        Parse a selection decision (``nextAgent`` and ``rationale``).

        Args:
            text: Final accumulated output of the selection prompt

        Returns:
            SelectionDecision; ``next_agent`` is None when it could not be found
        """
        next_agent = DecisionParser.extract_field(text, "nextAgent") or None
        rationale = DecisionParser.extract_field(text, "rationale") or ""

        if next_agent is None:
            logger.warning(f"Malformed selection decision, 'nextAgent' not found: {text[:200]!r}")

        return SelectionDecision(next_agent=next_agent, rationale=rationale)

    @staticmethod
    def extract_termination(text: str) -> TerminationDecision:
        """
        Parse a termination decision (``reason`` and ``shouldTerminate``).

        Args:
            text: Final accumulated output of the termination prompt

        Returns:
            TerminationDecision; ``should_terminate`` defaults to False
        """
        reason = DecisionParser.extract_field(text, "reason") or ""
        value = DecisionParser._raw_bool_value(text, "shouldTerminate")

        if value is None:
            logger.warning(f"Malformed termination decision, 'shouldTerminate' not parseable: {text[:200]!r}")

        return TerminationDecision(
            reason=reason,
            should_terminate=value is True,
            found=value is not None,
        )
