"""JSON extraction utilities for parsing structured data from LLM responses.

Providers asked for "valid JSON only" still wrap it in markdown fences or a
sentence of prose now and then. The extractor tries progressively looser
strategies before giving up.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional


class JSONExtractor:
    """Extract structured data from LLM responses.

    Handles various response formats:
    - Pure JSON
    - JSON in markdown code blocks (```json ... ```)
    - JSON embedded in natural language

    Example:
        extractor = JSONExtractor()
        data = extractor.extract_json('Sure! ```json\\n{"solution": "..."}\\n```')
    """

    JSON_BLOCK_PATTERN = re.compile(r'```(?:json)?\s*\n?(.*?)\n?```', re.DOTALL | re.IGNORECASE)
    JSON_OBJECT_PATTERN = re.compile(r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}', re.DOTALL)
    JSON_ARRAY_PATTERN = re.compile(r'\[[^\[\]]*(?:\[[^\[\]]*\][^\[\]]*)*\]', re.DOTALL)

    def extract_json(self, response: str, expect_type: str = "object") -> Optional[Dict[str, Any] | List[Any]]:
        """Extract JSON from an LLM response.

        Tries multiple extraction strategies:
        1. Direct JSON parsing
        2. Extract from markdown code blocks
        3. Find a JSON object/array in text

        Args:
            response: Raw LLM response text
            expect_type: "object" for dict, "array" for list

        Returns:
            Extracted JSON data of the expected type, or None
        """
        if not response or not response.strip():
            return None

        wanted = list if expect_type == "array" else dict

        result = self._try_direct_parse(response.strip())
        if isinstance(result, wanted):
            return result

        result = self._extract_from_code_blocks(response)
        if isinstance(result, wanted):
            return result

        if expect_type == "array":
            return self._find_json_array(response)
        return self._find_json_object(response)

    def _try_direct_parse(self, text: str) -> Optional[Dict[str, Any] | List[Any]]:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return None

    def _extract_from_code_blocks(self, text: str) -> Optional[Dict[str, Any] | List[Any]]:
        for match in self.JSON_BLOCK_PATTERN.findall(text):
            result = self._try_direct_parse(match.strip())
            if result is not None:
                return result
        return None

    def _find_json_object(self, text: str) -> Optional[Dict[str, Any]]:
        """Find the largest valid JSON object in text."""
        valid_objects = []
        for match in self.JSON_OBJECT_PATTERN.findall(text):
            result = self._try_direct_parse(match)
            if isinstance(result, dict):
                valid_objects.append((len(match), result))

        if valid_objects:
            valid_objects.sort(key=lambda x: x[0], reverse=True)
            return valid_objects[0][1]

        return None

    def _find_json_array(self, text: str) -> Optional[List[Any]]:
        for match in self.JSON_ARRAY_PATTERN.findall(text):
            result = self._try_direct_parse(match)
            if isinstance(result, list):
                return result
        return None
