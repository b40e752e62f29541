"""
WitnessBox - Character responses

Generates in-character testimony (or professor guidance) through the
OpenAI chat completions API.

Usage:
    from witnessbox.generation import OpenAIResponder

    responder = OpenAIResponder()
    result = responder.respond(
        "Inigo Montoya",
        "Who poisoned the wine?",
        [{"role": "user", "content": "Where were you that night?"}],
    )
    print(result.content)
    print(result.total_tokens)
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from openai import OpenAI

from witnessbox.config import get_model, get_professor_name, get_work_title
from witnessbox.schemas import Responder


logger = logging.getLogger("witnessbox.generation")

TEMPERATURE = 0.8
MAX_COMPLETION_TOKENS = 800


@dataclass
class GenerationResult:
    """Text plus token usage from one model call."""
    content: str
    responder: Responder
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str = ""

    def __str__(self):
        return self.content


class CharacterResponder(Protocol):
    """Anything that can answer a student as a character or the professor."""

    def respond(
        self,
        character_name: str,
        situation: str,
        messages: list[dict],
        professor_mode: bool = False,
    ) -> GenerationResult:
        ...


def build_system_prompt(
    character_name: str,
    situation: str,
    professor_mode: bool = False,
) -> str:
    """System prompt offering both personas and a JSON output contract."""
    work = get_work_title()
    professor = get_professor_name()

    if professor_mode:
        decision = (
            f"The student has explicitly asked for {professor}. "
            f'You MUST answer as {professor} and set "responder" to "professor".'
        )
    else:
        decision = (
            f"Automatically choose {professor} when the student asks about questioning "
            f"strategies, needs help formulating better questions, asks meta-questions about "
            f"evidence or argument construction, or seems stuck and needs Socratic guidance.\n"
            f"Choose the character when the student questions them directly about events "
            f"they witnessed, their feelings, motivations, relationships or specific scenes."
        )

    return (
        f"You are an educational simulation for *{work}* mock trial preparation. "
        f"You have two personas available.\n\n"
        f"**CHARACTER PERSONA: {character_name}**\n"
        f"- Embody the character completely: personality, speech patterns, perspective\n"
        f"- Stay true to their knowledge, experience and motivations from {work}\n"
        f"- Reflect on past events after the story's conclusion\n"
        f"- Acknowledge both book and movie versions when they differ\n"
        f"- If you don't know something, say so and suggest who might know more\n\n"
        f"**PROFESSOR PERSONA: {professor}**\n"
        f"- An enthusiastic literature professor who adores {work}\n"
        f"- Teaches reasoning and critical thinking rather than legal procedure\n"
        f"- Warm, encouraging and student-centered\n\n"
        f"**DECISION LOGIC:**\n{decision}\n\n"
        f"**OUTPUT FORMAT:**\n"
        f'Respond with JSON: {{"responder": "character" or "professor", '
        f'"response": "your complete response"}}\n\n'
        f"**CONTEXT:**\nCharacter: {character_name}\nInvestigation: {situation}"
    )


def parse_reply(content: str) -> tuple[str, Responder]:
    """
    Extract response text and persona from the model's JSON reply.

    Falls back to the raw text as the character when the reply is not
    the expected JSON object.
    """
    try:
        payload = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Model reply was not JSON; using raw text")
        return content or "", Responder.CHARACTER

    if not isinstance(payload, dict) or not isinstance(payload.get("response"), str):
        logger.warning("Model reply missing 'response'; using raw text")
        return content, Responder.CHARACTER

    responder = (
        Responder.PROFESSOR if payload.get("responder") == "professor"
        else Responder.CHARACTER
    )
    return payload["response"], responder


class OpenAIResponder:
    """Responder backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model or get_model()
        if client is not None:
            self._client = client
        else:
            key = api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise ValueError("No API key. Set OPENAI_API_KEY or pass api_key parameter.")
            self._client = OpenAI(api_key=key)

    def respond(
        self,
        character_name: str,
        situation: str,
        messages: list[dict],
        professor_mode: bool = False,
    ) -> GenerationResult:
        """
        Ask the model for the next reply in a conversation.

        Args:
            character_name: Character the student is questioning.
            situation: The investigation the session is about.
            messages: Conversation so far as {"role", "content"} dicts,
                ending with the student's new message.
            professor_mode: Force the professor persona.

        Returns:
            GenerationResult with reply text, persona and token usage.
        """
        system_prompt = build_system_prompt(character_name, situation, professor_mode)

        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                *({"role": m["role"], "content": m["content"]} for m in messages),
            ],
            temperature=TEMPERATURE,
            max_completion_tokens=MAX_COMPLETION_TOKENS,
            response_format={"type": "json_object"},
        )

        raw = response.choices[0].message.content or ""
        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        total_tokens = usage.total_tokens if usage else 0

        content, responder = parse_reply(raw)
        if professor_mode:
            responder = Responder.PROFESSOR

        return GenerationResult(
            content=content,
            responder=responder,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            model=self.model,
        )
