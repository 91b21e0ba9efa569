"""Test doubles shared by the unit and integration suites."""

import json
import re
from typing import Any, Dict, List, Optional, Union

from linkhub.domain.interfaces.ai_model import AIModel
from linkhub.domain.models.ai import StructuredAIResponse

START_TIME = 1_700_000_000.0
ID_RE = re.compile(r'"id": "([0-9a-f-]{36})"')


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(AIModel):
    """Provider that replays scripted answers (JSON text or exceptions) in order.

    Once the script is exhausted an echoing provider answers every item id
    found in the prompt with an authoritative result.
    """

    def __init__(self, answers: Optional[List[Union[str, Exception]]] = None, provider_name: str = "groq",
                 echo: bool = True):
        self.answers = list(answers or [])
        self.provider_name = provider_name
        self.echo = echo
        self.calls: List[Dict[str, Any]] = []

    async def complete_json(self, prompt, model, system_prompt=None) -> StructuredAIResponse:
        self.calls.append({"prompt": prompt, "model": model, "system_prompt": system_prompt})
        if not self.answers:
            if not self.echo:
                raise AssertionError("FakeProvider ran out of scripted answers")
            ids = ID_RE.findall(prompt)
            return StructuredAIResponse(content=results_payload(*(ok_result(i) for i in ids)), model_name=model)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return StructuredAIResponse(content=answer, model_name=model)


def results_payload(*entries: Dict[str, Any]) -> str:
    return json.dumps({"results": list(entries)})


def ok_result(item_id: str, description: str = "Search engine for Internet-connected devices",
              category: str = "OSINT", tags: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "id": item_id,
        "status": "ok",
        "description": description,
        "category": category,
        "tags": tags if tags is not None else ["recon", "iot"],
    }
